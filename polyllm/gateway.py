"""Model query gateway: parallel fan-out, per-model error isolation, ordered results."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from polyllm.models import ModelDescriptor, QueryResult
from polyllm.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CEILING = 16000


@dataclass
class QueryCallbacks:
    """Optional per-model progress hooks. Each fires for one model, with no barrier.

    A hook that raises is logged; it does not fail or cancel any request.
    """

    on_start: Callable[[int, ModelDescriptor], None] | None = None
    on_stop: Callable[[int], None] | None = None
    on_response: Callable[[int, QueryResult], None] | None = None


def clamp_max_tokens(model: ModelDescriptor, ceiling: int = DEFAULT_TOKEN_CEILING) -> int:
    return min(model.max_output_tokens, ceiling)


def _notify(callback: Callable[..., None] | None, *args: Any) -> None:
    """Run a progress hook; a failing hook is logged and never reaches the request."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Progress callback %s failed", getattr(callback, "__name__", callback))


async def _query_one(
    provider: ChatProvider,
    model: ModelDescriptor,
    prompt: str,
    index: int,
    ceiling: int,
    callbacks: QueryCallbacks | None,
) -> QueryResult:
    """Call one model. Never raises except on cancellation; failures become QueryResult(success=False)."""
    _notify(callbacks and callbacks.on_start, index, model)

    try:
        response = await provider.generate(model, prompt, clamp_max_tokens(model, ceiling))
        result = QueryResult(
            model=model,
            success=True,
            response=response.content,
            usage=response.usage,
            latency_sec=response.latency_sec,
        )
        logger.info(
            "Model %s responded in %.1fs (%s tokens)",
            model.name,
            response.latency_sec,
            response.usage.get("total_tokens", "?"),
        )
    except ProviderError as exc:
        logger.warning("Model %s failed: %s", model.name, exc.message)
        result = QueryResult(model=model, success=False, error=exc.message)
    except Exception as exc:
        logger.warning("Model %s unexpected failure: %s", model.name, exc)
        result = QueryResult(model=model, success=False, error=str(exc) or type(exc).__name__)
    finally:
        _notify(callbacks and callbacks.on_stop, index)

    _notify(callbacks and callbacks.on_response, index, result)
    return result


async def query_models(
    provider: ChatProvider,
    models: list[ModelDescriptor],
    prompt: str,
    callbacks: QueryCallbacks | None = None,
    token_ceiling: int = DEFAULT_TOKEN_CEILING,
) -> list[QueryResult]:
    """Query every model concurrently with the same prompt.

    Args:
        provider: Transport shared by all calls.
        models: Models to query; output order matches this order.
        prompt: The full prompt text.
        callbacks: Optional progress hooks, fired as each model finishes.
        token_ceiling: Provider-wide output token ceiling.

    Returns:
        One QueryResult per model, in input order regardless of completion order.
    """
    if not models:
        return []

    logger.info("Querying %d model(s)", len(models))
    results = await asyncio.gather(
        *(
            _query_one(provider, model, prompt, index, token_ceiling, callbacks)
            for index, model in enumerate(models)
        )
    )

    succeeded = sum(1 for r in results if r.success)
    logger.info("%d/%d model(s) responded successfully", succeeded, len(models))
    return list(results)
