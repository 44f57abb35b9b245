"""
Delegation policy: how many llm_query() calls a session must make before a
final answer is accepted.

The default ties the minimum to codebase size. Pass any callable with the
same signature to RLMOrchestrator(delegation_policy=...) to change it; a
policy returning 0 disables the gate.
"""
from __future__ import annotations

from typing import Callable, Sequence, Tuple

DelegationPolicy = Callable[[int], int]

# (minimum file count, required calls), largest first.
SUB_CALL_TIERS: Sequence[Tuple[int, int]] = (
    (200, 5),
    (100, 4),
    (50, 3),
    (20, 2),
)


def min_sub_calls(file_count: int) -> int:
    for threshold, calls in SUB_CALL_TIERS:
        if file_count >= threshold:
            return calls
    return 1


def no_minimum(file_count: int) -> int:
    return 0
