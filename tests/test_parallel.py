from __future__ import annotations

import asyncio

import pytest

from rlmscope.rlm.parallel import ParallelExecutionConfig, ParallelExecutor, QueryTimeout, describe


def _executor(**overrides) -> ParallelExecutor:
    values = {"backoff_base": 0.0, "retry_count": 0}
    values.update(overrides)
    return ParallelExecutor(ParallelExecutionConfig(**values))


@pytest.mark.asyncio
async def test_results_are_keyed_by_id_not_completion_order() -> None:
    delays = {"first": 0.03, "second": 0.01, "third": 0.0}

    async def delegate(query: str) -> str:
        await asyncio.sleep(delays[query])
        return query.upper()

    result = await _executor().execute_batch([(key, key) for key in delays], delegate)

    assert result.results == {"first": "FIRST", "second": "SECOND", "third": "THIRD"}
    assert result.errors == {}
    assert set(result.timings) == set(delays)


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_batch_size() -> None:
    active = 0
    peak = 0

    async def delegate(query: str) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return query

    queries = [{"id": f"q{i}", "query": f"query {i}"} for i in range(5)]
    result = await _executor(max_concurrent=2).execute_batch(queries, delegate)

    assert peak == 2
    assert len(result.results) == 5


@pytest.mark.asyncio
async def test_failures_are_collected_without_fail_fast() -> None:
    async def delegate(query: str) -> str:
        if query == "bad":
            raise ValueError("cannot analyze")
        return "ok"

    result = await _executor().execute_batch([("a", "good"), ("b", "bad")], delegate)

    assert result.results == {"a": "ok"}
    assert isinstance(result.errors["b"], ValueError)
    assert describe(result) == {"succeeded": 1, "failed": 1, "total_time_ms": result.total_time_ms}


@pytest.mark.asyncio
async def test_retry_recovers_from_one_failure() -> None:
    attempts = {"count": 0}

    async def delegate(query: str) -> str:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("flaky")
        return "recovered"

    result = await _executor(retry_count=1).execute_batch([("only", "q")], delegate)

    assert result.results == {"only": "recovered"}
    assert attempts["count"] == 2


@pytest.mark.asyncio
async def test_per_call_timeout() -> None:
    async def delegate(query: str) -> str:
        await asyncio.sleep(1)
        return "late"

    result = await _executor(call_timeout=0.01).execute_batch([("slow", "q")], delegate)

    assert result.results == {}
    assert isinstance(result.errors["slow"], QueryTimeout)
    assert "Query timeout after 0.01s" in str(result.errors["slow"])


@pytest.mark.asyncio
async def test_fail_fast_cancels_batch_and_raises() -> None:
    async def delegate(query: str) -> str:
        if query == "bad":
            raise ValueError("boom")
        await asyncio.sleep(5)
        return "never"

    executor = _executor(fail_fast=True, max_concurrent=2)
    with pytest.raises(ValueError, match="boom"):
        await executor.execute_batch([("slow", "slow"), ("bad", "bad"), ("later", "later")], delegate)


def test_optimal_batch_size() -> None:
    assert ParallelExecutor.optimal_batch_size([]) == 1
    assert ParallelExecutor.optimal_batch_size(["x" * 400] * 3, max_tokens_per_batch=1000) == 10
    assert ParallelExecutor.optimal_batch_size(["x" * 40_000], max_tokens_per_batch=1000) == 1
