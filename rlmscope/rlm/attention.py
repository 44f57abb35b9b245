from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence

from rlmscope.models import MemoryEntry
from rlmscope.rlm.compression import estimate_tokens

_SECURITY_WORDS = ("security", "vulnerab", "auth", "injection")
_ARCHITECTURE_WORDS = ("architecture", "structure", "design", "pattern")
_DEPENDENCY_WORDS = ("depend", "import", "package", "module")


@dataclass
class AttentionWeights:
    file_analysis: float = 1.0
    pattern: float = 1.2
    dependency: float = 0.8
    issue: float = 1.5
    summary: float = 0.7


class SelectiveAttention:
    """Ranks memory entries by importance, type weight, and query overlap."""

    def __init__(self, weights: Optional[AttentionWeights] = None) -> None:
        self._defaults = weights or AttentionWeights()
        self.weights = AttentionWeights(**asdict(self._defaults))
        self.query_context = ""

    def set_query_context(self, query: str) -> None:
        self.query_context = query.lower()

    def adjust_weights_for_query(self, query: str) -> None:
        lower = query.lower()
        if any(word in lower for word in _SECURITY_WORDS):
            self.weights.issue = 2.0
            self.weights.pattern = 0.8
        if any(word in lower for word in _ARCHITECTURE_WORDS):
            self.weights.pattern = 2.0
            self.weights.file_analysis = 1.2
        if any(word in lower for word in _DEPENDENCY_WORDS):
            self.weights.dependency = 2.0

    def type_weight(self, entry_type: str) -> float:
        return getattr(self.weights, entry_type, 1.0)

    def relevance(self, content: str) -> float:
        """Fraction of query words (longer than 3 chars) present in ``content``."""
        words = [w for w in self.query_context.split() if len(w) > 3]
        if not words:
            return 0.0
        lower = content.lower()
        return sum(1 for w in words if w in lower) / len(words)

    def score_memory(self, entry: MemoryEntry) -> float:
        return entry.importance * self.type_weight(entry.type) * (1 + self.relevance(entry.content))

    def filter_by_attention(self, entries: Sequence[MemoryEntry], max_count: int) -> List[MemoryEntry]:
        return sorted(entries, key=self.score_memory, reverse=True)[:max_count]

    def build_attention_context(self, entries: Sequence[MemoryEntry], max_tokens: int) -> str:
        lines = ["## Relevant Context (Attention-Filtered)", ""]
        used = 20  # header overhead
        for entry in self.filter_by_attention(entries, 20):
            line = f"- [{entry.type}] {entry.content[:200]}"
            cost = estimate_tokens(line)
            if used + cost > max_tokens:
                break
            lines.append(line)
            used += cost
        return "\n".join(lines)

    def get_weights(self) -> Dict[str, float]:
        return asdict(self.weights)

    def reset_weights(self) -> None:
        self.weights = AttentionWeights(**asdict(self._defaults))
