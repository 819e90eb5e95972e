"""Shared pytest fixtures."""

import asyncio
import copy
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import ApiConfig, AppConfig, DefaultsConfig, PromptsConfig
from polyllm.models import ModelDescriptor, ModelResponse, QueryResult
from polyllm.providers.base import ChatProvider
from polyllm.sections import SECTION_ORDER, definition_for
from polyllm.session import ConsensusSession


def _consensus_template() -> str:
    blocks = "\n".join(
        f"{definition_for(k).start}\nExample for {k.value}\n{definition_for(k).end}"
        for k in SECTION_ORDER
    )
    return (
        "Analyze [NUMBER] outputs.\n\n"
        "Original prompt: %%USER_PROMPT%%\n\n"
        f"{blocks}\n\n"
        "Outputs:\n__MODEL_OUTPUT_BLOCK_GOES_HERE__"
    )


CONSENSUS_TEMPLATE = _consensus_template()
CONVERSION_TEMPLATE = "Mapping:\n{{MODEL_CODE_MAPPING}}\n\nConsensus:\n{{CONSENSUS_TEXT}}\n\nReturn JSON only."
CONVERSION_SAFE_TEMPLATE = "Simple JSON, v2 models list.\nMapping:\n{{MODEL_CODE_MAPPING}}\n\nConsensus:\n{{CONSENSUS_TEXT}}"


def section_reply(key: str, body: str) -> str:
    """A well-formed consensus-model reply for one section."""
    marker = definition_for(key).marker
    return f"Sure.\n## {marker}_START\n{body}\n## {marker}_END\nDone."


class MockProvider(ChatProvider):
    """Test double ChatProvider.

    Replies are looked up per model id, falling back to ``default``. A ``script``
    list, when given, is consumed in call order instead; entries that are
    exceptions are raised.
    """

    def __init__(
        self,
        responses: dict[str, str] | None = None,
        default: str = "Mock response",
        failures: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
        script: list | None = None,
    ) -> None:
        self._responses = responses or {}
        self._default = default
        self._failures = failures or {}
        self._delays = delays or {}
        self._script = list(script) if script is not None else None
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(side_effect=self._respond)  # type: ignore[method-assign]

    def name(self) -> str:
        return "mock"

    async def _respond(self, model: ModelDescriptor, prompt: str, max_tokens: int) -> ModelResponse:
        delay = self._delays.get(model.id, 0)
        if delay:
            await asyncio.sleep(delay)
        if self._script is not None:
            reply = self._script.pop(0)
            if isinstance(reply, Exception):
                raise reply
            content = reply
        else:
            if model.id in self._failures:
                raise self._failures[model.id]
            content = self._responses.get(model.id, self._default)
        return ModelResponse(
            model_id=model.id,
            content=content,
            latency_sec=0.1,
            usage={"total_tokens": 10},
        )

    async def generate(self, model: ModelDescriptor, prompt: str, max_tokens: int) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return await self._respond(model, prompt, max_tokens)

    def prompts_sent(self) -> list[str]:
        return [call.args[1] for call in self.generate.await_args_list]


@pytest.fixture
def sample_models() -> list[ModelDescriptor]:
    return [
        ModelDescriptor("anthropic/claude-opus-4", "Claude Opus 4", 32000, 32000),
        ModelDescriptor("openai/gpt-4.1", "GPT-4.1", 100000, 100000),
        ModelDescriptor("x-ai/grok-3-beta", "Grok 3 Beta", 32000, 32000),
    ]


@pytest.fixture
def consensus_model() -> ModelDescriptor:
    return ModelDescriptor("google/gemini-2.5-pro-preview", "Gemini Pro 2.5", 16000, 16000)


@pytest.fixture
def json_model() -> ModelDescriptor:
    return ModelDescriptor("openai/gpt-4.1", "GPT-4.1", 100000, 100000)


@pytest.fixture
def sample_codenames() -> dict[str, str]:
    return {
        "anthropic/claude-opus-4": "llm-!",
        "openai/gpt-4.1": "llm-*",
        "x-ai/grok-3-beta": "llm-%",
    }


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        consensus=CONSENSUS_TEMPLATE,
        conversion=CONVERSION_TEMPLATE,
        conversion_safe=CONVERSION_SAFE_TEMPLATE,
    )


@pytest.fixture
def sample_api_config() -> ApiConfig:
    return ApiConfig(
        base_url="https://openrouter.example/api/v1",
        api_key_env="TEST_OPENROUTER_KEY",
        timeout_sec=30,
        max_tokens_ceiling=16000,
    )


@pytest.fixture
def sample_app_config(
    tmp_path: Path,
    sample_api_config: ApiConfig,
    sample_prompts_config: PromptsConfig,
    sample_models: list[ModelDescriptor],
    consensus_model: ModelDescriptor,
    sample_codenames: dict[str, str],
) -> AppConfig:
    models = {m.id: m for m in [*sample_models, consensus_model]}
    return AppConfig(
        api=sample_api_config,
        defaults=DefaultsConfig(
            selected_models=[m.id for m in sample_models],
            consensus_model=consensus_model.id,
            json_model="openai/gpt-4.1",
            output_dir=tmp_path / "output",
            turn_cooldown_sec=0,
        ),
        models=models,
        codenames=sample_codenames,
        prompts=sample_prompts_config,
        api_key_available=True,
    )


@pytest.fixture
def sample_results(sample_models: list[ModelDescriptor]) -> list[QueryResult]:
    return [
        QueryResult(model=sample_models[0], success=True, response="Use YAML for humans.", latency_sec=1.0),
        QueryResult(model=sample_models[1], success=True, response="JSON is simpler to parse.", latency_sec=1.2),
        QueryResult(model=sample_models[2], success=False, error="HTTP 503: overloaded"),
    ]


@pytest.fixture
def sample_session(sample_models: list[ModelDescriptor], sample_results: list[QueryResult]) -> ConsensusSession:
    return ConsensusSession(
        user_prompt="Should we use YAML or JSON for config?",
        models=sample_models,
        results=sample_results,
    )


_CLASSIFICATION = {
    "formatVersion": "v1",
    "themes": [
        {
            "name": "Readability",
            "statement": "YAML is easier for humans to edit.",
            "importance": "high",
            "modelPositions": {
                "Claude Opus 4": {"stance": "agree", "mentionType": "direct", "quote": "", "reasoning": ""},
                "GPT-4.1": {"stance": "agree", "mentionType": "indirect", "quote": "", "reasoning": ""},
                "Grok 3 Beta": {"stance": "agree", "mentionType": "direct", "quote": "", "reasoning": ""},
            },
            "disagreements": [],
        },
        {
            "name": "Parsing cost",
            "statement": "JSON parsers are faster and stricter.",
            "importance": "medium",
            "modelPositions": {
                "Claude Opus 4": {"stance": "disagree", "mentionType": "direct", "quote": "", "reasoning": ""},
                "GPT-4.1": {"stance": "agree", "mentionType": "direct", "quote": "", "reasoning": ""},
                "Grok 3 Beta": {"stance": "not_mentioned", "mentionType": "omitted", "quote": "", "reasoning": ""},
            },
            "disagreements": [
                {"model": "Claude Opus 4", "position": "Speed rarely matters", "significance": "low"}
            ],
        },
    ],
    "insights": {
        "mainConclusion": "Prefer YAML for hand-edited config.",
        "keyFindings": [],
        "surprisingPatterns": "",
        "practicalImplications": "",
    },
    "modelBehavior": {
        "Claude Opus 4": {"responseStyle": "detailed", "tendencies": ["hedges"], "uniqueContributions": ["a", "b"]},
        "GPT-4.1": {"responseStyle": "concise", "tendencies": [], "uniqueContributions": []},
        "Grok 3 Beta": {"tendencies": [], "uniqueContributions": ["c"]},
    },
    "consensusFormation": {"pattern": "convergent", "description": "Agreed quickly."},
}


@pytest.fixture
def sample_classification() -> dict:
    return copy.deepcopy(_CLASSIFICATION)
