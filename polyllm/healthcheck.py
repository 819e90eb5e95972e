"""Model health checks: ping each selected model before starting a run."""

import asyncio
import logging

from polyllm.gateway import DEFAULT_TOKEN_CEILING, clamp_max_tokens
from polyllm.models import ModelDescriptor
from polyllm.providers.base import ChatProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(provider: ChatProvider, model: ModelDescriptor, ceiling: int) -> tuple[str, bool, str]:
    """Ping a single model. Returns (model id, ok, error_message)."""
    # Reasoning models return empty content on a tiny budget.
    try:
        await asyncio.wait_for(
            provider.generate(model, _PING_PROMPT, clamp_max_tokens(model, ceiling)),
            timeout=_TIMEOUT_SEC,
        )
        return model.id, True, ""
    except TimeoutError:
        return model.id, False, f"No reply within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        return model.id, False, str(exc)


async def run_health_checks(
    provider: ChatProvider,
    models: list[ModelDescriptor],
    token_ceiling: int = DEFAULT_TOKEN_CEILING,
) -> dict[str, tuple[bool, str]]:
    """Ping all models in parallel; duplicates are pinged once.

    Returns:
        Dict mapping model id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    unique = list({m.id: m for m in models}.values())
    results = await asyncio.gather(*(_check_one(provider, m, token_ceiling) for m in unique))
    failed = [model_id for model_id, ok, _ in results if not ok]
    if failed:
        logger.warning("Health check failed for: %s", ", ".join(failed))
    return {model_id: (ok, err) for model_id, ok, err in results}
