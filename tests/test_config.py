"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, PromptsConfig, load_config, validate_templates
from polyllm.models import ModelDescriptor
from tests.conftest import CONSENSUS_TEMPLATE, CONVERSION_SAFE_TEMPLATE, CONVERSION_TEMPLATE


def _settings(consensus: str = CONSENSUS_TEMPLATE, conversion: str = CONVERSION_TEMPLATE) -> dict:
    return {
        "api": {
            "base_url": "https://openrouter.example/api/v1",
            "api_key_env": "TEST_OPENROUTER_KEY",
            "timeout_sec": 90,
            "max_tokens_ceiling": 16000,
        },
        "defaults": {
            "selected_models": ["vendor/a", "vendor/b"],
            "consensus_model": "vendor/a",
            "json_model": "vendor/b",
            "output_dir": "./output",
        },
        "models": [
            {"id": "vendor/a", "name": "Model A", "max_context_tokens": 8000, "max_output_tokens": 4000,
             "codename": "llm-!"},
            {"id": "vendor/b", "name": "Model B", "max_context_tokens": 32000, "max_output_tokens": 32000},
        ],
        "prompts": {
            "consensus": consensus,
            "conversion": conversion,
            "conversion_safe": CONVERSION_SAFE_TEMPLATE,
        },
    }


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings()), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_api_defaults(minimal_settings):
    api = load_config(minimal_settings).api
    assert api.timeout_sec == 90
    assert api.max_tokens_ceiling == 16000
    assert api.temperature == 0.7
    assert api.top_p == 0.9
    assert api.frequency_penalty == 0.0
    assert api.presence_penalty == 0.0


def test_load_config_defaults(minimal_settings):
    defaults = load_config(minimal_settings).defaults
    assert defaults.selected_models == ["vendor/a", "vendor/b"]
    assert defaults.consensus_model == "vendor/a"
    assert defaults.turn_cooldown_sec == 0.3
    assert isinstance(defaults.output_dir, Path)


def test_load_config_models_keep_order(minimal_settings):
    config = load_config(minimal_settings)
    assert list(config.models) == ["vendor/a", "vendor/b"]
    assert config.models["vendor/a"] == ModelDescriptor("vendor/a", "Model A", 8000, 4000)


def test_load_config_codenames_only_where_given(minimal_settings):
    config = load_config(minimal_settings)
    assert config.codenames == {"vendor/a": "llm-!"}


def test_resolve_models(minimal_settings):
    config = load_config(minimal_settings)
    assert [m.name for m in config.resolve_models(["vendor/b", "vendor/a"])] == ["Model B", "Model A"]
    with pytest.raises(KeyError, match="vendor/zzz"):
        config.resolve_models(["vendor/a", "vendor/zzz"])


def test_api_key_available_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_OPENROUTER_KEY", "sk-test-key")
    assert load_config(minimal_settings).api_key_available is True


def test_api_key_missing_logs_warning(minimal_settings, monkeypatch, caplog):
    monkeypatch.delenv("TEST_OPENROUTER_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.api_key_available is False
    assert "TEST_OPENROUTER_KEY" in caplog.text


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_load_config_rejects_template_without_markers(tmp_path: Path):
    broken = CONSENSUS_TEMPLATE.replace("## SYNTHESIS_END", "")
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings(consensus=broken)), encoding="utf-8")
    with pytest.raises(ValueError, match="## SYNTHESIS_END"):
        load_config(path)


def test_validate_templates_reports_everything_missing():
    missing = validate_templates(
        PromptsConfig(consensus="[NUMBER] only", conversion="nothing", conversion_safe="{{CONSENSUS_TEXT}}")
    )
    assert "consensus template: %%USER_PROMPT%%" in missing
    assert "consensus template: ## COMPARISON_TABLE_START" in missing
    assert "conversion template: {{MODEL_CODE_MAPPING}}" in missing
    assert "conversion template: {{CONSENSUS_TEXT}}" in missing
    assert "safe conversion template: {{MODEL_CODE_MAPPING}}" in missing
    assert "safe conversion template: {{CONSENSUS_TEXT}}" not in missing
    assert "consensus template: [NUMBER]" not in missing


def test_shipped_settings_load():
    config = load_config()
    assert config.defaults.consensus_model in config.models
    assert config.defaults.json_model in config.models
    assert all(m in config.models for m in config.defaults.selected_models)
    assert len(set(config.codenames.values())) == len(config.codenames)
    assert validate_templates(config.prompts) == []
