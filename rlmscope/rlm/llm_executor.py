"""
Model calls with single-step fallback.

Extracted from the turn loop. Encapsulates:
- Root-model conversation calls (temperature 0.7, 4096 tokens)
- Delegated sub-model calls (temperature 0.3, 2048 tokens)
- One retry on the fallback model for transient (5xx / internal) failures
- Telemetry spans per call

Any non-transient failure is raised immediately as RLMProviderError.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from rlmscope import telemetry
from rlmscope.exceptions import RLMProviderError
from rlmscope.models import GenerateOptions, Message
from rlmscope.providers.base import BaseProvider
from rlmscope.retry import is_transient_error


@dataclass(frozen=True)
class CallSettings:
    temperature: float
    max_tokens: int


CONVERSATION_SETTINGS = CallSettings(temperature=0.7, max_tokens=4096)
DELEGATION_SETTINGS = CallSettings(temperature=0.3, max_tokens=2048)


class ModelCaller:
    def __init__(
        self,
        provider: BaseProvider,
        *,
        fallback_model: Optional[str] = None,
        verbose: bool = False,
    ) -> None:
        self._provider = provider
        self._fallback_model = fallback_model
        self._verbose = verbose
        self.calls = 0
        self.fallbacks = 0

    def _models_for(self, model: str) -> List[str]:
        if self._fallback_model and self._fallback_model != model:
            return [model, self._fallback_model]
        return [model]

    async def call_conversation(
        self,
        model: str,
        messages: List[Message],
        settings: CallSettings = CONVERSATION_SETTINGS,
    ) -> str:
        return await self._call(model, messages, settings, kind="conversation")

    async def call_model(
        self,
        model: str,
        prompt: str,
        settings: CallSettings = DELEGATION_SETTINGS,
    ) -> str:
        return await self._call(model, [Message(role="user", content=prompt)], settings, kind="delegation")

    async def _call(self, model: str, messages: List[Message], settings: CallSettings, *, kind: str) -> str:
        models = self._models_for(model)
        last_error: Optional[BaseException] = None
        for index, current in enumerate(models):
            options = GenerateOptions(
                model=current,
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
            )
            self.calls += 1
            try:
                with telemetry.span("rlm.model_call", model=current, kind=kind, messages=len(messages)):
                    response = await self._provider.generate_conversation(messages, options)
            except Exception as exc:
                last_error = exc
                if not is_transient_error(exc):
                    if isinstance(exc, RLMProviderError):
                        raise
                    raise _as_provider_error(exc, self._provider, current) from exc
                telemetry.log("warning", "model_transient_failure", model=current, kind=kind, error=str(exc))
                if self._verbose and index + 1 < len(models):
                    print(f"  [Warning] {current} failed ({exc}), trying fallback...")
                continue

            if index > 0:
                self.fallbacks += 1
                telemetry.log("info", "model_fallback_used", primary=model, fallback=current, kind=kind)
                if self._verbose:
                    print(f"  [Info] Using fallback model: {current}")
            return response.text or ""

        raise RLMProviderError(
            f"All models failed. Last error: {last_error}",
            provider=getattr(self._provider, "name", None),
            model=models[-1],
            status_code=getattr(last_error, "status_code", None),
            code="all_models_failed",
        )


def _as_provider_error(exc: BaseException, provider: BaseProvider, model: str) -> RLMProviderError:
    return RLMProviderError(
        f"Provider error (model: {model}): {exc}",
        provider=getattr(provider, "name", None),
        model=model,
        status_code=getattr(exc, "status_code", None),
    )
