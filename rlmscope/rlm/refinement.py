"""
Opt-in multi-pass answer refinement.

evaluate_quality is a best-effort additive heuristic (length, structure,
query-term overlap, concrete code references). Tests and callers should
treat it directionally: a structured answer that cites files scores higher
than a one-line reply, but the exact number carries no contract.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from rlmscope import telemetry
from rlmscope.models import RefinementPassResult

_NUMBERED = re.compile(r"\d+\.")
_BACKTICK_IDENT = re.compile(r"`[a-zA-Z_][a-zA-Z0-9_]*`")
_FILE_NAME = re.compile(r"[a-zA-Z]+\.(ts|js|py|tsx|jsx)")

Generate = Callable[[str], Awaitable[str]]


@dataclass
class RefinementConfig:
    max_passes: int = 3
    quality_threshold: int = 85
    min_improvement: int = 5
    enable_self_critique: bool = True


def _query_words(query: str) -> List[str]:
    return [w for w in query.lower().split() if len(w) > 3]


class IterativeRefiner:
    def __init__(self, config: Optional[RefinementConfig] = None) -> None:
        self.config = config or RefinementConfig()
        self._history: List[RefinementPassResult] = []

    def evaluate_quality(self, result: str, query: str) -> int:
        score = 50.0
        length = len(result)
        if 500 < length < 10_000:
            score += 10
        if 1000 < length < 5000:
            score += 5

        if "##" in result:
            score += 10
        if "- " in result or "* " in result:
            score += 5
        if _NUMBERED.search(result):
            score += 5

        words = _query_words(query)
        lower = result.lower()
        matches = sum(1 for w in words if w in lower)
        score += min(15, matches / max(1, len(words)) * 20)

        if "```" in result:
            score += 5
        if any(ext in result for ext in (".ts", ".js", ".py")):
            score += 5
        if _BACKTICK_IDENT.search(result):
            score += 5
        if _FILE_NAME.search(result):
            score += 5

        return int(min(100, max(0, round(score))))

    def generate_critique_prompt(self, result: str, query: str) -> str:
        draft = result[:2000] + ("...[truncated]" if len(result) > 2000 else "")
        return (
            "Review this analysis and identify areas for improvement:\n\n"
            f"**Original Query:** {query}\n\n"
            f"**Current Analysis:**\n{draft}\n\n"
            "**Critique the analysis for:**\n"
            "1. Completeness - Did it address all aspects of the query?\n"
            "2. Accuracy - Are the findings well-supported by the code?\n"
            "3. Specificity - Are there concrete file/function references?\n"
            "4. Actionability - Are recommendations clear and practical?\n"
            "5. Gaps - What important aspects were missed?\n\n"
            "Provide specific improvements needed."
        )

    def generate_refinement_prompt(self, original: str, critique: str, query: str) -> str:
        return (
            "Improve the analysis based on this critique:\n\n"
            f"**Original Query:** {query}\n\n"
            f"**Previous Analysis Summary:**\n{original[:1500]}\n\n"
            f"**Critique/Improvements Needed:**\n{critique[:1000]}\n\n"
            "**Instructions:**\n"
            "1. Address each point in the critique\n"
            "2. Add more specific file/code references\n"
            "3. Ensure completeness for all query aspects\n"
            "4. Keep the response focused and well-structured\n\n"
            "Provide the improved analysis:"
        )

    def should_continue_refinement(self, current: int, previous: Optional[int]) -> Tuple[bool, str]:
        if len(self._history) >= self.config.max_passes:
            return False, "Max passes reached"
        if current >= self.config.quality_threshold:
            return False, "Quality threshold met"
        if previous is not None and current - previous < self.config.min_improvement:
            return False, "Insufficient improvement"
        return True, "Refinement beneficial"

    def record_pass(
        self,
        quality_score: int,
        improvements: Optional[List[str]] = None,
        issues_found: Optional[List[str]] = None,
    ) -> RefinementPassResult:
        previous = self._history[-1].quality_score if self._history else None
        should_continue, _ = self.should_continue_refinement(quality_score, previous)
        result = RefinementPassResult(
            pass_number=len(self._history) + 1,
            quality_score=quality_score,
            improvements=list(improvements or []),
            issues_found=list(issues_found or []),
            should_continue=should_continue,
        )
        self._history.append(result)
        return result

    async def refine(self, answer: str, query: str, generate: Generate) -> str:
        """
        Critique and rewrite ``answer`` until a stop condition holds.

        Returns the best-scoring draft seen, which may be the original.
        """
        best, best_score = answer, self.evaluate_quality(answer, query)
        current = answer
        record = self.record_pass(best_score)
        while record.should_continue:
            critique = ""
            if self.config.enable_self_critique:
                critique = await generate(self.generate_critique_prompt(current, query))
            current = await generate(self.generate_refinement_prompt(current, critique, query))
            score = self.evaluate_quality(current, query)
            issues = [line.strip("-* ").strip() for line in critique.splitlines() if line.strip()][:5]
            previous_score = self._history[-1].quality_score
            record = self.record_pass(
                score,
                improvements=[f"quality {previous_score} -> {score}"],
                issues_found=issues,
            )
            telemetry.log("info", "refinement_pass", pass_number=record.pass_number, quality=score)
            if score > best_score:
                best, best_score = current, score
        return best

    def get_history(self) -> List[RefinementPassResult]:
        return list(self._history)

    def get_overall_improvement(self) -> int:
        if len(self._history) < 2:
            return 0
        return self._history[-1].quality_score - self._history[0].quality_score

    def reset(self) -> None:
        self._history = []
