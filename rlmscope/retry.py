"""
Failure classification and async backoff for provider calls.

Two retry policies live in the engine:
- Model fallback (rlm/llm_executor.py): a transient failure on the primary
  model is retried exactly once against the fallback model.
- Batch retry (rlm/parallel.py): each delegated call in a batch may be
  retried with exponential backoff.

Both use is_transient_error() so "what counts as transient" has one answer.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from openai import APIStatusError, InternalServerError

from rlmscope.exceptions import RLMProviderError

T = TypeVar("T")


def is_transient_error(exc: BaseException) -> bool:
    """
    True for server-side (5xx / internal) failures.

    Providers that only surface a message are classified by text, which is
    how some SDKs report upstream 500s.
    """
    if isinstance(exc, RLMProviderError):
        return exc.is_transient
    if isinstance(exc, InternalServerError):
        return True
    if isinstance(exc, APIStatusError):
        return exc.status_code >= 500
    message = str(exc)
    return "500" in message or "Internal" in message


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
    return min(base_delay * (2**attempt), max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    retries: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """
    Await ``func()`` up to ``retries + 1`` times with exponential backoff.

    Any exception is retried; the last one propagates.
    """
    last_exception: Optional[BaseException] = None
    for attempt in range(retries + 1):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_exception = exc
        if attempt < retries:
            delay = backoff_delay(attempt, base_delay, max_delay)
            if on_retry is not None:
                on_retry(attempt + 1, last_exception, delay)
            await asyncio.sleep(delay)

    assert last_exception is not None
    raise last_exception
