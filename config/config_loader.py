"""Load settings.yaml into typed dataclasses. Validates prompt templates at startup."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from polyllm.models import ModelDescriptor
from polyllm.sections import all_markers

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

CONSENSUS_PLACEHOLDERS = ("[NUMBER]", "%%USER_PROMPT%%", "__MODEL_OUTPUT_BLOCK_GOES_HERE__")
CONVERSION_PLACEHOLDERS = ("{{MODEL_CODE_MAPPING}}", "{{CONSENSUS_TEXT}}")


@dataclass
class ApiConfig:
    base_url: str
    api_key_env: str
    timeout_sec: int
    max_tokens_ceiling: int
    temperature: float = 0.7
    top_p: float = 0.9
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    app_title: str = "PolyLLM Consensus Engine"
    referer: str = "https://localhost"


@dataclass
class PromptsConfig:
    consensus: str
    conversion: str
    conversion_safe: str   # simplified v2 prompt used on retry


@dataclass
class DefaultsConfig:
    selected_models: list[str]
    consensus_model: str
    json_model: str
    output_dir: Path
    turn_cooldown_sec: float = 0.3


@dataclass
class AppConfig:
    api: ApiConfig
    defaults: DefaultsConfig
    models: dict[str, ModelDescriptor]   # keyed by id, in settings order
    codenames: dict[str, str]            # model id -> codename
    prompts: PromptsConfig
    api_key_available: bool = False

    def resolve_models(self, model_ids: list[str]) -> list[ModelDescriptor]:
        """Map ids to descriptors, preserving order. Raises KeyError for unknown ids."""
        unknown = [m for m in model_ids if m not in self.models]
        if unknown:
            raise KeyError(f"Unknown model id(s): {', '.join(unknown)}")
        return [self.models[m] for m in model_ids]


def validate_templates(prompts: PromptsConfig) -> list[str]:
    """Return every placeholder or section marker missing from the templates."""
    missing: list[str] = []
    for token in (*CONSENSUS_PLACEHOLDERS, *all_markers()):
        if token not in prompts.consensus:
            missing.append(f"consensus template: {token}")
    for token in CONVERSION_PLACEHOLDERS:
        if token not in prompts.conversion:
            missing.append(f"conversion template: {token}")
        if token not in prompts.conversion_safe:
            missing.append(f"safe conversion template: {token}")
    return missing


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the
    prompt templates lack placeholders or section markers.
    Logs a warning for a missing API key but does not raise; callers check
    api_key_available.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    api_raw = raw["api"]
    api = ApiConfig(
        base_url=str(api_raw["base_url"]),
        api_key_env=str(api_raw["api_key_env"]),
        timeout_sec=int(api_raw["timeout_sec"]),
        max_tokens_ceiling=int(api_raw["max_tokens_ceiling"]),
        temperature=float(api_raw.get("temperature", 0.7)),
        top_p=float(api_raw.get("top_p", 0.9)),
        frequency_penalty=float(api_raw.get("frequency_penalty", 0.0)),
        presence_penalty=float(api_raw.get("presence_penalty", 0.0)),
        app_title=str(api_raw.get("app_title", "PolyLLM Consensus Engine")),
        referer=str(api_raw.get("referer", "https://localhost")),
    )

    models: dict[str, ModelDescriptor] = {}
    codenames: dict[str, str] = {}
    for model_raw in raw["models"]:
        descriptor = ModelDescriptor(
            id=str(model_raw["id"]),
            name=str(model_raw["name"]),
            max_context_tokens=int(model_raw["max_context_tokens"]),
            max_output_tokens=int(model_raw["max_output_tokens"]),
        )
        models[descriptor.id] = descriptor
        if model_raw.get("codename"):
            codenames[descriptor.id] = str(model_raw["codename"])

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        selected_models=list(defaults_raw["selected_models"]),
        consensus_model=str(defaults_raw["consensus_model"]),
        json_model=str(defaults_raw["json_model"]),
        output_dir=Path(defaults_raw["output_dir"]),
        turn_cooldown_sec=float(defaults_raw.get("turn_cooldown_sec", 0.3)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        consensus=prompts_raw["consensus"],
        conversion=prompts_raw["conversion"],
        conversion_safe=prompts_raw["conversion_safe"],
    )
    missing = validate_templates(prompts)
    if missing:
        raise ValueError("Prompt templates are missing required tokens: " + "; ".join(missing))

    api_key_available = bool(os.environ.get(api.api_key_env, "").strip())
    if api_key_available:
        logger.info("API key found in %s", api.api_key_env)
    else:
        logger.warning("No API key found, set %s in .env", api.api_key_env)

    return AppConfig(
        api=api,
        defaults=defaults,
        models=models,
        codenames=codenames,
        prompts=prompts,
        api_key_available=api_key_available,
    )
