"""
Conversation compression and the memory bank.

Keeps a long analysis session inside the model's context:
- compress_result: shrink delegated output to its structural skeleton
- extract_findings / add_to_memory: retain scored findings across turns
- register_turn: one-line summary per turn for the compression block
- build_optimized_history: sliding window over raw messages, older turns
  replaced by a single synthesized summary message
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional

from rlmscope.models import CompressedTurn, MemoryEntry, MemoryType, Message, TokenSavings

TRUNCATION_MARKER = "\n\n[... truncated for context efficiency ...]"
SUMMARY_HEADER = "## Previous Analysis Summary (compressed for efficiency)"

_FINDING_WORDS = (
    "found",
    "detected",
    "identified",
    "pattern",
    "issue",
    "warning",
    "error",
    "dependency",
    "architecture",
)
_HEADING = re.compile(r"^#{1,2}\s")
_NUMBERED = re.compile(r"^\d+\.")
_QUERY_EXCERPT = re.compile(r"""llm_query\s*\(\s*f?["'`]([^"'`]{0,100})""")


@dataclass
class ContextManagerConfig:
    sliding_window_size: int = 3  # raw turns (user+assistant pairs) kept verbatim
    max_memory_entries: int = 20
    max_summary_length: int = 200
    max_result_length: int = 1500


def categorize_finding(content: str) -> MemoryType:
    lower = content.lower()
    if any(word in lower for word in ("file", "module", "component")):
        return "file_analysis"
    if any(word in lower for word in ("pattern", "architecture", "design")):
        return "pattern"
    if any(word in lower for word in ("dependency", "import", "require")):
        return "dependency"
    if any(word in lower for word in ("issue", "error", "warning", "vulnerability", "bug")):
        return "issue"
    return "summary"


def score_finding(content: str) -> int:
    """Importance 1..10: base 5 plus keyword boosts."""
    lower = content.lower()
    score = 5
    if any(word in lower for word in ("critical", "security", "vulnerability")):
        score += 3
    if any(word in lower for word in ("error", "bug", "issue")):
        score += 2
    if any(word in lower for word in ("main", "entry", "core")):
        score += 1
    if "todo" in lower or "note" in lower:
        score -= 1
    return min(10, max(1, score))


class ContextManager:
    def __init__(self, config: Optional[ContextManagerConfig] = None) -> None:
        self.config = config or ContextManagerConfig()
        self._memory_bank: List[MemoryEntry] = []
        self._compressed_history: List[CompressedTurn] = []

    def compress_result(self, text: str) -> str:
        """
        Shrink delegated output to at most max_result_length characters.

        Keeps headings, up to 30 bullet/numbered lines, and non-empty lines
        under summary/conclusion/key headings, then truncates with a marker.
        Text already within the limit is returned unchanged.
        """
        limit = self.config.max_result_length
        if len(text) <= limit:
            return text

        kept: List[str] = []
        section = ""
        for line in text.split("\n"):
            stripped = line.strip()
            if stripped.startswith("#"):
                kept.append(line)
                section = stripped.lower()
                continue
            if stripped.startswith(("-", "*", "•")) and len(kept) < 30:
                kept.append(line)
                continue
            if _NUMBERED.match(stripped) and len(kept) < 30:
                kept.append(line)
                continue
            if any(word in section for word in ("conclusion", "summary", "key")):
                if stripped and len(kept) < 40:
                    kept.append(line)

        compressed = "\n".join(kept)
        if len(compressed) > limit:
            compressed = compressed[: max(0, limit - 50)] + TRUNCATION_MARKER
        return compressed

    def extract_findings(self, text: str, turn: int, source: Optional[str] = None) -> List[MemoryEntry]:
        findings: List[MemoryEntry] = []
        for line in text.split("\n"):
            stripped = line.strip()
            if not stripped:
                continue
            important = any(word in stripped for word in _FINDING_WORDS) or bool(_HEADING.match(stripped))
            if not important or not 10 < len(stripped) < 500:
                continue
            findings.append(
                MemoryEntry(
                    id=f"finding-{turn}-{len(findings)}",
                    type=categorize_finding(stripped),
                    content=stripped[:300],
                    source=source,
                    importance=score_finding(stripped),
                    turn=turn,
                )
            )
            if len(findings) == 5:
                break
        return findings

    def _is_duplicate(self, entry: MemoryEntry) -> bool:
        for existing in self._memory_bank:
            if existing.content == entry.content:
                return True
            if entry.source is not None and existing.source == entry.source and existing.type == entry.type:
                return True
        return False

    def add_to_memory(self, entries: List[MemoryEntry]) -> None:
        for entry in entries:
            if not self._is_duplicate(entry):
                self._memory_bank.append(entry)

        if len(self._memory_bank) > self.config.max_memory_entries:
            # sorted() is stable, so equal importance keeps the older entry.
            ranked = sorted(self._memory_bank, key=lambda m: m.importance, reverse=True)
            self._memory_bank = ranked[: self.config.max_memory_entries]

    def compress_turn(
        self,
        turn: int,
        response: str,
        execution_result: Optional[str],
        error: Optional[str],
    ) -> CompressedTurn:
        if "llm_query" in response:
            match = _QUERY_EXCERPT.search(response)
            summary = f"Analyzed: {match.group(1)}..." if match else "Made sub-LLM analysis"
        elif "FINAL" in response:
            summary = "Provided final answer"
        elif "print(files" in response:
            summary = "Listed files in codebase"
        elif "file_index" in response:
            summary = "Read file contents"
        else:
            summary = response[:100].replace("\n", " ") + "..."

        findings: List[str] = []
        if execution_result:
            findings = [f.content[:100] for f in self.extract_findings(execution_result, turn)]

        return CompressedTurn(
            turn=turn,
            summary=summary[: self.config.max_summary_length],
            findings=findings[:3],
            had_code="```" in response,
            had_error=bool(error),
        )

    def register_turn(
        self,
        turn: int,
        response: str,
        execution_result: Optional[str],
        error: Optional[str],
    ) -> CompressedTurn:
        compressed = self.compress_turn(turn, response, execution_result, error)
        self._compressed_history.append(compressed)
        if execution_result:
            self.add_to_memory(self.extract_findings(execution_result, turn))
        return compressed

    def top_memories(self, n: int) -> List[MemoryEntry]:
        return sorted(self._memory_bank, key=lambda m: m.importance, reverse=True)[:n]

    def build_compression_summary(self) -> str:
        lines = [SUMMARY_HEADER, ""]
        if self._compressed_history:
            lines.append("### Actions Taken:")
            for ct in self._compressed_history[-5:]:
                status = "❌" if ct.had_error else "✓"
                lines.append(f"- Turn {ct.turn} {status}: {ct.summary}")
            lines.append("")
        if self._memory_bank:
            lines.append("### Key Findings:")
            for entry in self.top_memories(7):
                lines.append(f"- [{entry.type}] {entry.content[:150]}")
            lines.append("")
        lines.append("Continue analysis from where we left off.")
        return "\n".join(lines)

    def build_optimized_history(self, history: List[Message], current_turn: int) -> List[Message]:
        """
        Sliding-window view of the conversation.

        The first message (system prompt plus codebase context) is always
        kept; the last 2 * window messages stay verbatim; everything between
        is replaced by one compression summary. ``current_turn`` is accepted
        for callers that track it and does not change the result.
        """
        window = self.config.sliding_window_size
        if len(history) <= window * 2 + 2:
            return list(history)

        optimized = [history[0]]
        turns_to_compress = (len(history) - 2) // 2 - window
        if turns_to_compress > 0 and self._compressed_history:
            optimized.append(Message(role="user", content=self.build_compression_summary()))

        start = max(1, len(history) - window * 2)
        optimized.extend(history[start:])
        return optimized

    def build_memory_summary(self) -> str:
        if not self._memory_bank:
            return ""
        grouped: Dict[str, List[MemoryEntry]] = OrderedDict()
        for entry in self._memory_bank:
            grouped.setdefault(entry.type, []).append(entry)

        lines = ["## Analysis Memory Bank", ""]
        for entry_type, entries in grouped.items():
            lines.append(f"### {entry_type.replace('_', ' ').upper()}")
            for entry in entries[:5]:
                lines.append(f"- {entry.content[:200]}")
            lines.append("")
        return "\n".join(lines)

    def get_memory_bank(self) -> List[MemoryEntry]:
        return list(self._memory_bank)

    def get_compressed_history(self) -> List[CompressedTurn]:
        return list(self._compressed_history)

    def get_token_savings_estimate(self) -> TokenSavings:
        original = 0
        compressed = 0
        for ct in self._compressed_history:
            # Rough: a raw turn is ~500 chars plus ~200 per finding it produced.
            original += 500 + len(ct.findings) * 200
            compressed += len(ct.summary) + len(ct.findings) * 50
        savings = round((1 - compressed / original) * 100) if original else 0
        return TokenSavings(
            original_chars=original,
            compressed_chars=compressed,
            savings=min(100, max(0, savings)),
        )

    def reset(self) -> None:
        self._memory_bank = []
        self._compressed_history = []
