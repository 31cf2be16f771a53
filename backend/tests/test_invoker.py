"""
Tests for the provider fallback and retry state machine.
"""

from __future__ import annotations

import pytest

from ballotguide.services.exceptions import (
    FailureKind,
    ProviderConfigError,
    ProviderExhaustedError,
    ProviderResponseError,
)
from ballotguide.services.invoker import ProviderInvoker, RetryPolicy, initial_token_budget
from ballotguide.services.providers.base import RawProviderOutput, StopReason, TokenUsage
from conftest import FakeAdapter, http_error


def _invoker(adapters, clock, **kwargs) -> ProviderInvoker:
    return ProviderInvoker(adapters, RetryPolicy(), sleep=clock.sleep, **kwargs)


def _length_stop(text: str = '{"races":[', model: str = "m1", used: int = 2048) -> RawProviderOutput:
    return RawProviderOutput(
        text=text,
        stop_reason=StopReason.LENGTH,
        usage=TokenUsage(input_tokens=5, output_tokens=used),
        model=model,
    )


@pytest.mark.asyncio
async def test_rate_limited_model_escalates_to_next(clock):
    m1 = FakeAdapter("m1", [http_error(429, "m1"), http_error(429, "m1")])
    m2 = FakeAdapter("m2", ["ok"])
    invoker = _invoker([m1, m2], clock)

    result = await invoker.invoke("sys", "user")

    assert result.text == "ok"
    assert result.model == "m2"
    assert len(m1.calls) == 2
    assert clock.sleeps == [5.0, 15.0]
    assert clock.elapsed >= 20.0


@pytest.mark.asyncio
async def test_retry_after_header_extends_first_wait(clock):
    m1 = FakeAdapter("m1", [http_error(429, "m1", retry_after=9), "ok"])
    result = await _invoker([m1], clock).invoke("sys", "user")

    assert result.model == "m1"
    assert clock.sleeps == [9.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 503, 529, None])
async def test_overload_retries_same_model_once(clock, status):
    m1 = FakeAdapter("m1", [http_error(status, "m1"), "ok"])
    m2 = FakeAdapter("m2", ["unused"])

    result = await _invoker([m1, m2], clock).invoke("sys", "user")

    assert result.model == "m1"
    assert clock.sleeps == [2.0]
    assert m2.calls == []


@pytest.mark.asyncio
async def test_other_status_falls_through_without_wait(clock):
    m1 = FakeAdapter("m1", [http_error(400, "m1")])
    m2 = FakeAdapter("m2", ["ok"])

    result = await _invoker([m1, m2], clock).invoke("sys", "user")

    assert result.model == "m2"
    assert len(m1.calls) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_empty_response_falls_through(clock):
    m1 = FakeAdapter("m1", [ProviderResponseError("no text", "fake", "m1")])
    m2 = FakeAdapter("m2", ["ok"])

    result = await _invoker([m1, m2], clock).invoke("sys", "user")
    assert result.model == "m2"


@pytest.mark.asyncio
async def test_last_model_overload_is_terminal(clock):
    m1 = FakeAdapter("m1", [http_error(503, "m1"), http_error(503, "m1")])
    m2 = FakeAdapter("m2", [http_error(502, "m2"), http_error(502, "m2")])

    with pytest.raises(ProviderExhaustedError) as exc_info:
        await _invoker([m1, m2], clock).invoke("sys", "user")

    assert exc_info.value.kind is FailureKind.OVERLOADED
    assert str(exc_info.value) == "fake: All models overloaded"
    assert exc_info.value.model == "m2"
    assert clock.sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_last_model_rate_limit_is_terminal(clock):
    m1 = FakeAdapter("m1", [http_error(429, "m1"), http_error(429, "m1")])

    with pytest.raises(ProviderExhaustedError) as exc_info:
        await _invoker([m1], clock).invoke("sys", "user")

    assert exc_info.value.kind is FailureKind.RATE_LIMITED
    assert "Rate limited" in str(exc_info.value)
    # No escalation wait when there is nothing to escalate to.
    assert clock.sleeps == [5.0]


@pytest.mark.asyncio
async def test_last_model_other_failure_keeps_message(clock):
    m1 = FakeAdapter("m1", [http_error(401, "m1")])

    with pytest.raises(ProviderExhaustedError) as exc_info:
        await _invoker([m1], clock).invoke("sys", "user")

    assert exc_info.value.kind is FailureKind.OTHER
    assert "401" in str(exc_info.value)


@pytest.mark.asyncio
async def test_length_stop_doubles_budget_once(clock):
    m1 = FakeAdapter("m1", [_length_stop(), _length_stop(used=4096)])

    result = await _invoker([m1], clock).invoke("sys", "user")

    assert m1.calls == [2048, 4096]
    assert result.max_tokens == 4096
    assert result.stop_reason is StopReason.LENGTH
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_budget_expansion_is_capped(clock):
    m1 = FakeAdapter("m1", [_length_stop(used=8192)])

    result = await _invoker([m1], clock).invoke("sys", "user", locale="es")

    assert m1.calls == [8192]
    assert result.stop_reason is StopReason.LENGTH


@pytest.mark.asyncio
async def test_explicit_max_tokens_is_not_expanded(clock):
    m1 = FakeAdapter("m1", [_length_stop(used=1000)])

    result = await _invoker([m1], clock).invoke("sys", "user", max_tokens=1000)

    assert m1.calls == [1000]
    assert result.max_tokens == 1000


@pytest.mark.asyncio
async def test_min_budget_raises_initial_budget(clock):
    m1 = FakeAdapter("m1", ["ok"], min_budget=4096)
    await _invoker([m1], clock).invoke("sys", "user")
    assert m1.calls == [4096]


def test_initial_budget_by_locale():
    assert initial_token_budget(None) == 2048
    assert initial_token_budget("en") == 2048
    assert initial_token_budget("fr") == 2048
    assert initial_token_budget("es") == 8192
    assert initial_token_budget("es_cached") == 4096


@pytest.mark.asyncio
async def test_usage_is_recorded(clock):
    records = []

    async def recorder(component, usage, model):
        records.append((component, usage.input_tokens, usage.output_tokens, model))

    invoker = _invoker([FakeAdapter("m1", ["ok"])], clock, usage_recorder=recorder, component="guide")
    await invoker.invoke("sys", "user")
    await invoker.drain()

    assert records == [("guide", 10, 20, "m1")]


@pytest.mark.asyncio
async def test_usage_recorder_failure_is_not_fatal(clock):
    async def recorder(component, usage, model):
        raise RuntimeError("store down")

    invoker = _invoker([FakeAdapter("m1", ["ok"])], clock, usage_recorder=recorder)
    result = await invoker.invoke("sys", "user")
    await invoker.drain()

    assert result.text == "ok"


@pytest.mark.asyncio
async def test_streaming_forwards_chunks(clock):
    text = '{"races":[]}' * 3
    chunks = []
    m1 = FakeAdapter("m1", [text], chunk_size=5)

    result = await _invoker([m1], clock).invoke_streaming("sys", "user", None, chunks.append)

    assert "".join(chunks) == text
    assert result.text == text


@pytest.mark.asyncio
async def test_streaming_failure_before_output_falls_through(clock):
    chunks = []
    m1 = FakeAdapter("m1", [http_error(400, "m1")])
    m2 = FakeAdapter("m2", ["ok"])

    result = await _invoker([m1, m2], clock).invoke_streaming("sys", "user", None, chunks.append)

    assert result.model == "m2"
    assert chunks == ["ok"]


@pytest.mark.asyncio
async def test_streaming_failure_after_output_is_terminal(clock):
    chunks = []
    m1 = FakeAdapter("m1", ["partial output here"])
    m1.fail_after_chunks = http_error(503, "m1")
    m2 = FakeAdapter("m2", ["unused"])

    with pytest.raises(ProviderExhaustedError) as exc_info:
        await _invoker([m1, m2], clock).invoke_streaming("sys", "user", None, chunks.append)

    assert exc_info.value.kind is FailureKind.OVERLOADED
    assert len(chunks) == 1
    assert m2.calls == []
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_streaming_never_expands_budget(clock):
    m1 = FakeAdapter("m1", [_length_stop()])

    result = await _invoker([m1], clock).invoke_streaming("sys", "user", None, lambda chunk: None)

    assert m1.calls == [2048]
    assert result.stop_reason is StopReason.LENGTH


def test_no_adapters_is_a_config_error():
    with pytest.raises(ProviderConfigError):
        ProviderInvoker([])


def test_policy_waits():
    policy = RetryPolicy()
    assert policy.wait_for(http_error(429), 1) == 5.0
    assert policy.wait_for(http_error(429), 2) == 15.0
    assert policy.wait_for(http_error(429), 3) == 15.0
    assert policy.wait_for(http_error(429, retry_after=30), 1) == 30.0
    assert policy.wait_for(http_error(503), 1) == 2.0
    assert policy.expand(2048) == 4096
    assert policy.expand(6000) == 8192
