from __future__ import annotations

import asyncio

import httpx
import pytest
from openai import APIStatusError, InternalServerError

import rlmscope.retry as retry_module
from rlmscope.exceptions import RLMProviderError
from rlmscope.models import GenerateOptions, GenerateResponse, Message
from rlmscope.providers.base import BaseProvider
from rlmscope.rlm.llm_executor import ModelCaller
from tests.providers.mock_provider import MockProvider


def _response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code=status_code, request=httpx.Request("POST", "https://example.com"))


@pytest.mark.parametrize(
    "exc, expected",
    [
        (RLMProviderError("upstream", status_code=503), True),
        (RLMProviderError("bad request", status_code=400), False),
        (RLMProviderError("Internal error, try later"), True),
        (InternalServerError("down", response=_response(500), body=None), True),
        (APIStatusError("gateway", response=_response(502), body=None), True),
        (APIStatusError("not found", response=_response(404), body=None), False),
        (RuntimeError("Internal 500"), True),
        (ValueError("invalid prompt"), False),
    ],
)
def test_is_transient_error(exc: BaseException, expected: bool) -> None:
    assert retry_module.is_transient_error(exc) is expected


def test_backoff_delay_doubles_and_caps() -> None:
    assert [retry_module.backoff_delay(n, 1.0, 5.0) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_retry_async_backs_off_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    retries: list[int] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    calls = {"count": 0}

    async def work() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise RuntimeError("flaky")
        return "ok"

    result = await retry_module.retry_async(
        work,
        retries=2,
        base_delay=1.0,
        on_retry=lambda attempt, exc, delay: retries.append(attempt),
    )

    assert result == "ok"
    assert sleeps == [1.0, 2.0]
    assert retries == [1, 2]


@pytest.mark.asyncio
async def test_retry_async_raises_last_error() -> None:
    async def work() -> str:
        raise ValueError("always")

    with pytest.raises(ValueError, match="always"):
        await retry_module.retry_async(work, retries=1, base_delay=0.0)


@pytest.mark.asyncio
async def test_retry_async_does_not_swallow_cancellation() -> None:
    calls = {"count": 0}

    async def work() -> str:
        calls["count"] += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await retry_module.retry_async(work, retries=3, base_delay=0.0)
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_transient_failure_retries_once_on_fallback() -> None:
    provider = MockProvider(
        main_outputs=["fallback answer"],
        failures={"root-model": [RuntimeError("Internal 500")]},
    )
    caller = ModelCaller(provider, fallback_model="fallback-model")

    text = await caller.call_conversation("root-model", [Message(role="user", content="hi")])

    assert text == "fallback answer"
    assert [model for model, _ in provider.calls] == ["root-model", "fallback-model"]
    assert caller.fallbacks == 1
    assert caller.calls == 2


@pytest.mark.asyncio
async def test_non_transient_failure_raises_without_fallback() -> None:
    provider = MockProvider(
        main_outputs=["unused"],
        failures={"root-model": [RLMProviderError("unauthorized", status_code=401)]},
    )
    caller = ModelCaller(provider, fallback_model="fallback-model")

    with pytest.raises(RLMProviderError) as excinfo:
        await caller.call_model("root-model", "hi")

    assert excinfo.value.is_auth_error
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_foreign_exception_is_wrapped() -> None:
    provider = MockProvider(main_outputs=[], failures={"root-model": [ValueError("bad request body")]})
    caller = ModelCaller(provider, fallback_model="fallback-model")

    with pytest.raises(RLMProviderError, match="bad request body") as excinfo:
        await caller.call_model("root-model", "hi")

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert excinfo.value.model == "root-model"


@pytest.mark.asyncio
async def test_fallback_is_attempted_only_once() -> None:
    provider = MockProvider(
        main_outputs=["never"],
        failures={
            "root-model": [RuntimeError("Internal 500")],
            "fallback-model": [RuntimeError("Internal 500 again")],
        },
    )
    caller = ModelCaller(provider, fallback_model="fallback-model")

    with pytest.raises(RLMProviderError) as excinfo:
        await caller.call_model("root-model", "hi")

    assert excinfo.value.code == "all_models_failed"
    assert str(excinfo.value) == "All models failed. Last error: Internal 500 again"
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_no_fallback_when_fallback_is_same_model() -> None:
    provider = MockProvider(main_outputs=[], failures={"root-model": [RuntimeError("Internal 500")]})
    caller = ModelCaller(provider, fallback_model="root-model")

    with pytest.raises(RLMProviderError):
        await caller.call_model("root-model", "hi")
    assert len(provider.calls) == 1


class _RecordingProvider(BaseProvider):
    def __init__(self) -> None:
        self.options: list[GenerateOptions] = []

    async def generate_conversation(self, messages, options=None) -> GenerateResponse:
        self.options.append(options)
        return GenerateResponse(text="ok")


@pytest.mark.asyncio
async def test_conversation_and_delegation_settings() -> None:
    provider = _RecordingProvider()
    caller = ModelCaller(provider)

    await caller.call_conversation("root", [Message(role="user", content="hi")])
    await caller.call_model("sub", "analyze")

    conversation, delegation = provider.options
    assert (conversation.model, conversation.temperature, conversation.max_tokens) == ("root", 0.7, 4096)
    assert (delegation.model, delegation.temperature, delegation.max_tokens) == ("sub", 0.3, 2048)
