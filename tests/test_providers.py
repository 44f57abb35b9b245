from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from rlmscope.config import reset_settings
from rlmscope.exceptions import RLMProviderError
from rlmscope.models import GenerateOptions, Message
from rlmscope.providers import create_provider, get_provider_config, list_providers, register_provider
from rlmscope.providers.base import BaseProvider
from rlmscope.providers.openai_compat import OpenAICompatProvider
from rlmscope.providers.registry import PROVIDERS


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://example.com/v1/chat/completions")


class _FakeCompletions:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.params: List[Dict[str, Any]] = []

    async def create(self, **params: Any) -> Any:
        self.params.append(params)
        if self.error is not None:
            raise self.error
        return self.response


def _provider(completions: _FakeCompletions, **kwargs: Any) -> OpenAICompatProvider:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompatProvider("test", client=client, **kwargs)


@pytest.mark.asyncio
async def test_generate_conversation_maps_request_and_response() -> None:
    completions = _FakeCompletions(
        response={
            "choices": [{"message": {"content": "four files"}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        }
    )
    provider = _provider(completions)

    response = await provider.generate_conversation(
        [Message(role="user", content="count"), Message(role="assistant", content="ok")],
        GenerateOptions(model="gpt-4o-mini", temperature=0.3, max_tokens=2048),
    )

    assert response.text == "four files"
    assert response.usage.total_tokens == 15
    assert completions.params == [
        {
            "model": "gpt-4o-mini",
            "messages": [{"role": "user", "content": "count"}, {"role": "assistant", "content": "ok"}],
            "temperature": 0.3,
            "max_tokens": 2048,
        }
    ]


@pytest.mark.asyncio
async def test_generate_uses_default_model_and_tolerates_empty_choices() -> None:
    completions = _FakeCompletions(response=SimpleNamespace(choices=[], usage=None))
    provider = _provider(completions, default_model="fallback-default")

    response = await provider.generate("hello")

    assert response.text == ""
    assert response.usage is None
    assert completions.params[0]["model"] == "fallback-default"
    assert "temperature" not in completions.params[0]


@pytest.mark.asyncio
async def test_missing_model_is_an_error() -> None:
    provider = _provider(_FakeCompletions())
    with pytest.raises(RLMProviderError) as excinfo:
        await provider.generate("hello")
    assert excinfo.value.code == "missing_model"


@pytest.mark.asyncio
async def test_status_error_keeps_status_code() -> None:
    error = APIStatusError(
        "upstream overloaded",
        response=httpx.Response(503, request=_request()),
        body=None,
    )
    provider = _provider(_FakeCompletions(error=error))

    with pytest.raises(RLMProviderError) as excinfo:
        await provider.generate("hello", GenerateOptions(model="m"))

    assert excinfo.value.status_code == 503
    assert excinfo.value.is_transient
    assert excinfo.value.details == {"provider": "test", "model": "m", "status_code": 503}


@pytest.mark.asyncio
async def test_connection_error_is_translated() -> None:
    provider = _provider(_FakeCompletions(error=APIConnectionError(request=_request())))

    with pytest.raises(RLMProviderError) as excinfo:
        await provider.generate("hello", GenerateOptions(model="m"))

    assert excinfo.value.code == "connection_error"
    assert not excinfo.value.is_transient


@pytest.mark.asyncio
async def test_base_provider_contract() -> None:
    provider = BaseProvider()
    assert not provider.supports_web_grounding()
    assert provider.get_grounding_model() is None
    with pytest.raises(NotImplementedError):
        await provider.generate("hello")
    assert await provider.test_connection() is False


def test_registry_lists_builtin_endpoints() -> None:
    names = list_providers()
    assert {"openai", "openrouter", "groq", "ollama"} <= set(names)
    assert get_provider_config("openrouter") == {"base_url": "https://openrouter.ai/api/v1"}
    assert get_provider_config("nope") is None


def test_register_provider_validates_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("rlmscope.providers.registry.PROVIDERS", dict(PROVIDERS))
    register_provider("internal", base_url="https://llm.example.com/v1")
    assert get_provider_config("internal") == {"base_url": "https://llm.example.com/v1"}

    with pytest.raises(ValueError, match="Invalid base_url"):
        register_provider("broken", base_url="not-a-url")


def test_create_provider(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("RLM_CONFIG_DIR", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RLM_BASE_URL", "unset")
    monkeypatch.delenv("RLM_BASE_URL")
    reset_settings()
    try:
        provider = create_provider("openrouter", api_key="test-key")
        assert provider.name == "openrouter"
        assert str(provider._client.base_url).startswith("https://openrouter.ai/api/v1")

        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("does-not-exist")
    finally:
        reset_settings()
