from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from rlmscope import telemetry
from rlmscope.exceptions import RLMProviderError
from rlmscope.models import GenerateOptions, GenerateResponse, Message, TokenUsage
from rlmscope.providers.base import BaseProvider


def _get_field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class OpenAICompatProvider(BaseProvider):
    """
    Provider for any OpenAI-compatible Chat Completions endpoint.

    Provider failures are translated into RLMProviderError with the HTTP
    status preserved, so callers can tell server-side (5xx) failures from
    request errors without knowing about the openai client.
    """

    def __init__(
        self,
        name: str = "openai",
        *,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: float = 120.0,
        default_model: Optional[str] = None,
    ) -> None:
        self.name = name
        self._default_model = default_model
        if client is None:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                default_headers=headers,
                timeout=httpx.Timeout(timeout_seconds, connect=10.0),
                # Model fallback is the engine's retry; keep the client from stacking its own.
                max_retries=0,
            )
        else:
            self._client = client

    async def generate_conversation(
        self, messages: List[Message], options: Optional[GenerateOptions] = None
    ) -> GenerateResponse:
        options = options or GenerateOptions()
        model = options.model or self._default_model
        if not model:
            raise RLMProviderError(
                "No model specified", provider=self.name, code="missing_model"
            )
        if options.enable_web_grounding:
            telemetry.log(
                "warning", "provider_grounding_unsupported", provider=self.name, model=model
            )

        params: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if options.max_tokens is not None:
            params["max_tokens"] = options.max_tokens

        try:
            response = await self._client.chat.completions.create(**params)
        except APIStatusError as exc:
            raise RLMProviderError(
                f"{self.name} returned {exc.status_code}: {exc.message}",
                provider=self.name,
                model=model,
                status_code=exc.status_code,
            ) from exc
        except (APITimeoutError, APIConnectionError) as exc:
            raise RLMProviderError(
                f"{self.name} connection failed: {exc}",
                provider=self.name,
                model=model,
                code="connection_error",
            ) from exc

        choices = _get_field(response, "choices") or []
        text = ""
        if choices:
            message = _get_field(choices[0], "message")
            text = _get_field(message, "content") or ""
        return GenerateResponse(text=text, usage=self._extract_usage(response))

    @staticmethod
    def _extract_usage(response: Any) -> Optional[TokenUsage]:
        usage = _get_field(response, "usage")
        if usage is None:
            return None
        return TokenUsage(
            prompt_tokens=_get_field(usage, "prompt_tokens"),
            completion_tokens=_get_field(usage, "completion_tokens"),
            total_tokens=_get_field(usage, "total_tokens"),
        )
