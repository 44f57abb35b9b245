"""
Context-rot detection: is the root model losing track of earlier turns?

Best-effort heuristic. Known behaviour:
- Repetition signals lag; question density needs three responses.
- Retention phrases subtract from the score, so a response that both
  claims continuity and shows confusion can read as healthy.
- Long prose without code can be a legitimate synthesis step and still
  adds a small amount of suspicion.
Callers should react to the direction of the score, not exact values.
"""
from __future__ import annotations

import re
from collections import deque
from typing import Deque, Dict, List, Pattern, Sequence

from rlmscope.models import MemoryEntry, Recommendation, RotIndicators

ROT_PATTERNS: Sequence[Pattern[str]] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"as (i |we )?(mentioned|discussed|noted) (earlier|before|previously)",
        r"i('m| am) not sure what",
        r"what (was|were) (we|you) (looking|asking)",
        r"can you remind me",
        r"i don't (have|see) (context|information) about",
        r"let me start (over|again|fresh)",
        r"i('ve| have) lost track",
        r"refresh my (memory|understanding)",
        r"what (file|code|function) (are|were) we",
    )
)

RETENTION_PATTERNS: Sequence[Pattern[str]] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"based on (the|my) (previous|earlier) analysis",
        r"as (we|i) (found|discovered|identified)",
        r"continuing (from|with) (the|our)",
        r"building on (the|our) (findings|analysis)",
    )
)

ROT_WEIGHT = 20
RETENTION_WEIGHT = 15
RECURRENCE_WEIGHT = 10
QUESTION_DENSITY_WEIGHT = 15
NO_REFERENCE_WEIGHT = 10


def _has_rot(text: str) -> bool:
    return any(p.search(text) for p in ROT_PATTERNS)


def recommend(confidence: int) -> Recommendation:
    if confidence >= 60:
        return "restart"
    if confidence >= 40:
        return "summarize"
    if confidence >= 20:
        return "inject_memory"
    return "none"


class ContextRotDetector:
    def __init__(self, window_size: int = 5) -> None:
        self.window_size = window_size
        self._recent: Deque[str] = deque(maxlen=window_size)
        self._rot_indicator_count = 0
        self._memory_reference_count = 0

    def analyze_response(self, response: str) -> RotIndicators:
        self._recent.append(response)
        indicators: List[str] = []
        rot_score = 0
        retention_score = 0

        for pattern in ROT_PATTERNS:
            if pattern.search(response):
                indicators.append(f"Rot pattern: {pattern.pattern[:30]}...")
                rot_score += ROT_WEIGHT
                self._rot_indicator_count += 1

        for pattern in RETENTION_PATTERNS:
            if pattern.search(response):
                retention_score += RETENTION_WEIGHT
                self._memory_reference_count += 1

        # Confusion that persists across the window counts more than a one-off.
        if rot_score:
            earlier = sum(1 for text in list(self._recent)[:-1] if _has_rot(text))
            if earlier:
                indicators.append(f"Recurring confusion across {earlier + 1} recent responses")
                rot_score += RECURRENCE_WEIGHT * earlier

        if len(self._recent) >= 3:
            average = sum(text.count("?") for text in self._recent) / len(self._recent)
            if average > 3:
                indicators.append("High question frequency (possible confusion)")
                rot_score += QUESTION_DENSITY_WEIGHT

        if (
            len(response) > 500
            and "file_index" not in response
            and "llm_query" not in response
            and "FINAL" not in response
        ):
            indicators.append("No code/file references in substantial response")
            rot_score += NO_REFERENCE_WEIGHT

        confidence = min(100, max(0, rot_score - retention_score))
        return RotIndicators(
            detected=confidence >= 20,
            confidence=confidence,
            indicators=indicators,
            recommendation=recommend(confidence),
        )

    def generate_memory_injection(self, memory_bank: Sequence[MemoryEntry]) -> str:
        """Reminder block of the top-10 memories; empty string for an empty bank."""
        if not memory_bank:
            return ""
        top = sorted(memory_bank, key=lambda m: m.importance, reverse=True)[:10]
        lines = [
            "## Memory Refresh (Key Findings So Far)",
            "",
            "To help maintain context, here are the key findings from our analysis:",
            "",
        ]
        lines.extend(f"- **[{m.type}]** {m.content[:150]}" for m in top)
        lines.append("")
        lines.append("Continue the analysis with these findings in mind.")
        return "\n".join(lines)

    def get_stats(self) -> Dict[str, float]:
        total = self._rot_indicator_count + self._memory_reference_count
        return {
            "rot_indicators": self._rot_indicator_count,
            "memory_references": self._memory_reference_count,
            "ratio": self._memory_reference_count / total if total else 1.0,
        }

    def reset(self) -> None:
        self._recent.clear()
        self._rot_indicator_count = 0
        self._memory_reference_count = 0
