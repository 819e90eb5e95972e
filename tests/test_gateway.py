"""Tests for polyllm/gateway.py."""

import asyncio
import logging
import random

import pytest

from polyllm.gateway import QueryCallbacks, clamp_max_tokens, query_models
from polyllm.models import ModelDescriptor
from polyllm.providers.base import ProviderError
from tests.conftest import MockProvider


@pytest.fixture
def five_models() -> list[ModelDescriptor]:
    return [ModelDescriptor(f"vendor/model-{i}", f"Model {i}", 8000, 8000) for i in range(5)]


def test_clamp_max_tokens_uses_ceiling():
    model = ModelDescriptor("a/b", "B", 100000, 100000)
    assert clamp_max_tokens(model) == 16000


def test_clamp_max_tokens_keeps_smaller_model_limit():
    model = ModelDescriptor("a/b", "B", 4096, 4096)
    assert clamp_max_tokens(model, ceiling=16000) == 4096


async def test_results_follow_input_order_under_random_latency(five_models):
    rng = random.Random(7)
    delays = {m.id: rng.uniform(0, 0.05) for m in five_models}
    provider = MockProvider(
        responses={m.id: f"answer from {m.name}" for m in five_models},
        delays=delays,
    )

    results = await query_models(provider, five_models, "prompt")

    assert [r.model for r in results] == five_models
    assert [r.response for r in results] == [f"answer from {m.name}" for m in five_models]


async def test_results_follow_input_order_when_first_model_is_slowest(five_models):
    delays = {m.id: 0.05 - i * 0.01 for i, m in enumerate(five_models)}
    provider = MockProvider(responses={m.id: m.id for m in five_models}, delays=delays)

    results = await query_models(provider, five_models, "prompt")

    assert [r.response for r in results] == [m.id for m in five_models]


async def test_one_failure_is_isolated(five_models):
    provider = MockProvider(
        responses={m.id: f"ok {m.id}" for m in five_models},
        failures={five_models[2].id: ProviderError("Model 2", "HTTP 500: boom")},
    )

    results = await query_models(provider, five_models, "prompt")

    assert [r.success for r in results] == [True, True, False, True, True]
    assert results[2].error == "HTTP 500: boom"
    assert results[2].response == ""
    for i in (0, 1, 3, 4):
        assert results[i].response == f"ok {five_models[i].id}"
        assert results[i].error == ""


async def test_unexpected_exception_becomes_failed_result(five_models, caplog):
    provider = MockProvider(failures={five_models[0].id: RuntimeError("socket closed")})

    with caplog.at_level(logging.WARNING, logger="polyllm.gateway"):
        results = await query_models(provider, five_models[:2], "prompt")

    assert results[0].success is False
    assert results[0].error == "socket closed"
    assert results[1].success is True
    assert "Model 0" in caplog.text


async def test_all_failures_still_return_every_result(five_models):
    provider = MockProvider(failures={m.id: ProviderError(m.name, "down") for m in five_models})

    results = await query_models(provider, five_models, "prompt")

    assert len(results) == 5
    assert not any(r.success for r in results)


async def test_empty_model_list_returns_empty():
    provider = MockProvider()
    assert await query_models(provider, [], "prompt") == []
    provider.generate.assert_not_awaited()


async def test_each_model_gets_same_prompt_and_clamped_tokens(five_models):
    big = ModelDescriptor("big/model", "Big", 200000, 200000)
    provider = MockProvider()

    await query_models(provider, [big, five_models[0]], "the prompt", token_ceiling=16000)

    calls = provider.generate.await_args_list
    assert [c.args[1] for c in calls] == ["the prompt", "the prompt"]
    assert sorted(c.args[2] for c in calls) == [8000, 16000]


async def test_callbacks_fire_per_model(five_models):
    started: list[int] = []
    stopped: list[int] = []
    responded: dict[int, bool] = {}
    provider = MockProvider(failures={five_models[1].id: ProviderError("Model 1", "nope")})

    callbacks = QueryCallbacks(
        on_start=lambda i, m: started.append(i),
        on_stop=lambda i: stopped.append(i),
        on_response=lambda i, r: responded.__setitem__(i, r.success),
    )
    await query_models(provider, five_models[:3], "prompt", callbacks=callbacks)

    assert sorted(started) == [0, 1, 2]
    assert sorted(stopped) == [0, 1, 2]
    assert responded == {0: True, 1: False, 2: True}


async def test_failing_callback_does_not_cancel_siblings(five_models, caplog):
    def explode_on_first(index, result):
        if index == 0:
            raise RuntimeError("display broke")

    provider = MockProvider(delays={five_models[1].id: 0.05})
    callbacks = QueryCallbacks(on_start=lambda i, m: 1 / 0, on_response=explode_on_first)

    results = await query_models(provider, five_models[:3], "prompt", callbacks=callbacks)

    assert [r.success for r in results] == [True, True, True]
    assert provider.generate.await_count == 3
    assert "display broke" in caplog.text


async def test_cancellation_propagates(five_models):
    provider = MockProvider(delays={m.id: 1.0 for m in five_models})

    task = asyncio.create_task(query_models(provider, five_models, "prompt"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
