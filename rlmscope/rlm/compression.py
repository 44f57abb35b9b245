"""
Usage-driven compression of delegated results.

The compressor holds the latest token-usage estimate for the rendered
conversation and scales how much of each delegated result is kept.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional

from rlmscope.models import CompressionLevel, ContextUsageMetrics

COMPRESSED_MARKER = "\n[...compressed...]"
CHARS_PER_TOKEN = 4

_NUMBERED = re.compile(r"^\d+\.")

_LEVEL_FACTORS = {
    CompressionLevel.EMERGENCY: 0.3,
    CompressionLevel.AGGRESSIVE: 0.5,
    CompressionLevel.NORMAL: 0.75,
}


def estimate_tokens(text: str) -> int:
    """
    Approximate token count as ceil(chars / 4).

    This is a heuristic, not a tokenizer; every budget in the engine uses it
    so estimates stay comparable with each other.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _truncate(text: str, max_length: int) -> str:
    return text[: max(0, max_length - 30)] + COMPRESSED_MARKER


@dataclass
class AdaptiveCompressionConfig:
    target_usage_percent: float = 70
    aggressive_threshold: float = 80
    emergency_threshold: float = 90
    min_result_length: int = 500


class AdaptiveCompressor:
    def __init__(
        self,
        max_context_tokens: int = 100_000,
        config: Optional[AdaptiveCompressionConfig] = None,
    ) -> None:
        self.max_context_tokens = max_context_tokens
        self.config = config or AdaptiveCompressionConfig()
        self._current_usage = 0

    def update_usage(self, estimated_tokens: int) -> None:
        self._current_usage = estimated_tokens

    @property
    def usage_percent(self) -> float:
        return self._current_usage / self.max_context_tokens * 100

    def get_metrics(self, memory_bank_size: int = 0, compressed_turns_count: int = 0) -> ContextUsageMetrics:
        return ContextUsageMetrics(
            tokens_used=self._current_usage,
            max_tokens=self.max_context_tokens,
            usage_percent=round(self.usage_percent),
            memory_bank_size=memory_bank_size,
            compressed_turns_count=compressed_turns_count,
        )

    def get_compression_level(self) -> CompressionLevel:
        usage = self.usage_percent
        if usage >= self.config.emergency_threshold:
            return CompressionLevel.EMERGENCY
        if usage >= self.config.aggressive_threshold:
            return CompressionLevel.AGGRESSIVE
        if usage >= self.config.target_usage_percent:
            return CompressionLevel.NORMAL
        return CompressionLevel.NONE

    def get_max_result_length(self, base_length: int) -> int:
        """Scale ``base_length`` by level; floored at min_result_length, never above base."""
        factor = _LEVEL_FACTORS.get(self.get_compression_level())
        if factor is None:
            return base_length
        scaled = max(self.config.min_result_length, math.floor(base_length * factor))
        return min(base_length, scaled)

    def compress_adaptively(self, content: str, max_length: int) -> str:
        """
        Fit ``content`` into ``max_length`` characters.

        Below the target usage this is a plain prefix cut. Above it, headings
        always survive; emergency keeps only bold or CRITICAL/ERROR/WARNING
        lines besides, aggressive keeps up to 20 bullet/numbered lines,
        normal up to 40. Prose with none of those falls back to a prefix cut
        so a delegated result is never emptied.
        """
        if len(content) <= max_length:
            return content

        level = self.get_compression_level()
        if level is CompressionLevel.NONE:
            return _truncate(content, max_length)
        cap = 20 if level is CompressionLevel.AGGRESSIVE else 40
        kept: List[str] = []
        for line in content.split("\n"):
            stripped = line.strip()
            if stripped.startswith("#"):
                kept.append(line)
                continue
            if level is CompressionLevel.EMERGENCY:
                if stripped.startswith("**") or any(
                    marker in stripped for marker in ("CRITICAL", "ERROR", "WARNING")
                ):
                    kept.append(line)
            elif (stripped.startswith(("-", "*")) or _NUMBERED.match(stripped)) and len(kept) < cap:
                kept.append(line)

        result = "\n".join(kept)
        if not result.strip():
            return _truncate(content, max_length)
        if len(result) > max_length:
            return _truncate(result, max_length)
        return result
