"""
Batched concurrent delegation.

Queries run in fixed-size batches; each batch fans out with asyncio.gather
and finishes before the next one starts. Every call gets its own timeout
and retry budget. Results and errors are keyed by the caller's ids, so
completion order never affects attribution.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from rlmscope import telemetry
from rlmscope.models import ParallelBatchResult
from rlmscope.retry import retry_async

QueryItem = Union[Tuple[str, str], Mapping[str, str]]
Delegate = Callable[[str], Awaitable[str]]


@dataclass
class ParallelExecutionConfig:
    max_concurrent: int = 3
    call_timeout: float = 30.0  # seconds, per attempt
    fail_fast: bool = False
    retry_count: int = 1
    backoff_base: float = 1.0


class QueryTimeout(asyncio.TimeoutError):
    pass


def _normalize(queries: Iterable[QueryItem]) -> List[Tuple[str, str]]:
    items: List[Tuple[str, str]] = []
    for item in queries:
        if isinstance(item, Mapping):
            items.append((str(item["id"]), str(item["query"])))
        else:
            query_id, query = item
            items.append((str(query_id), str(query)))
    return items


class ParallelExecutor:
    def __init__(self, config: Optional[ParallelExecutionConfig] = None) -> None:
        self.config = config or ParallelExecutionConfig()

    async def _call_once(self, query: str, delegate: Delegate) -> str:
        try:
            return await asyncio.wait_for(delegate(query), timeout=self.config.call_timeout)
        except asyncio.TimeoutError as exc:
            raise QueryTimeout(f"Query timeout after {self.config.call_timeout}s") from exc

    async def _call_with_retry(self, query_id: str, query: str, delegate: Delegate) -> str:
        def on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            telemetry.log(
                "info",
                "parallel_query_retry",
                query_id=query_id,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )

        return await retry_async(
            lambda: self._call_once(query, delegate),
            retries=self.config.retry_count,
            base_delay=self.config.backoff_base,
            on_retry=on_retry,
        )

    async def execute_batch(self, queries: Iterable[QueryItem], delegate: Delegate) -> ParallelBatchResult:
        """
        Run every query through ``delegate``.

        With fail_fast, the first failure cancels the rest of its batch and
        is re-raised; otherwise failures are collected in ``errors``.
        """
        started = time.monotonic()
        result = ParallelBatchResult()
        items = _normalize(queries)
        size = max(1, self.config.max_concurrent)

        async def run(query_id: str, query: str) -> None:
            query_started = time.monotonic()
            try:
                result.results[query_id] = await self._call_with_retry(query_id, query, delegate)
            except Exception as exc:
                result.errors[query_id] = exc
                if self.config.fail_fast:
                    raise
            finally:
                result.timings[query_id] = int((time.monotonic() - query_started) * 1000)

        for offset in range(0, len(items), size):
            batch = items[offset : offset + size]
            tasks = [asyncio.ensure_future(run(query_id, query)) for query_id, query in batch]
            try:
                await asyncio.gather(*tasks)
            except Exception:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            finally:
                result.total_time_ms = int((time.monotonic() - started) * 1000)

        return result

    @staticmethod
    def optimal_batch_size(queries: Sequence[str], max_tokens_per_batch: int = 10_000) -> int:
        """How many queries of this average size fit a token budget (4 chars/token)."""
        if not queries:
            return 1
        average_tokens = sum(len(q) for q in queries) / len(queries) / 4
        if average_tokens <= 0:
            return max(1, len(queries))
        return max(1, int(max_tokens_per_batch // average_tokens))


def describe(result: ParallelBatchResult) -> Mapping[str, Any]:
    """Loggable summary of a batch outcome."""
    return {
        "succeeded": len(result.results),
        "failed": len(result.errors),
        "total_time_ms": result.total_time_ms,
    }
