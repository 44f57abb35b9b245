"""
Turn runner: the orchestrator's main loop.

Handles the prompt -> model -> script -> feedback cycle with:
- Wall-clock timeout and turn ceiling
- Sliding-window history compression
- Context-rot detection and memory injection
- Script execution through the session sandbox
- The delegation gate on final answers

One runner serves one session; nothing here is shared between sessions.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from rlmscope import telemetry
from rlmscope.exceptions import RLMProviderError
from rlmscope.models import (
    AnalysisContext,
    Message,
    Phase,
    Progress,
    RLMResult,
    SessionConfig,
    Turn,
)
from rlmscope.repl.sandbox import ScriptSandbox, extract_code
from rlmscope.rlm.attention import SelectiveAttention
from rlmscope.rlm.compression import AdaptiveCompressor, estimate_tokens
from rlmscope.rlm.context_manager import ContextManager
from rlmscope.rlm.feedback import (
    NUDGE_MESSAGE,
    extract_text_final,
    format_execution_feedback,
    format_rejection,
    has_code_block,
)
from rlmscope.rlm.llm_executor import ModelCaller
from rlmscope.rlm.policy import DelegationPolicy
from rlmscope.rlm.rot import ContextRotDetector

DELEGATED_RESULT_BASE_LENGTH = 1500
MEMORY_INJECTION_SIZE = 10

TurnObserver = Callable[[Turn], None]
ProgressObserver = Callable[[Progress], None]


def _trim_text(text: Optional[str], limit: int = 150) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]


@dataclass
class RunnerFeatures:
    context_compression: bool = True
    rot_detection: bool = True


class TurnRunner:
    """
    Runs one session's turn loop.

    Extracted from RLMOrchestrator.process_query() so the loop can be read
    and tested on its own.
    """

    def __init__(
        self,
        *,
        config: SessionConfig,
        caller: ModelCaller,
        context_manager: ContextManager,
        compressor: AdaptiveCompressor,
        rot_detector: ContextRotDetector,
        attention: SelectiveAttention,
        policy: DelegationPolicy,
        features: RunnerFeatures,
        on_turn_complete: Optional[TurnObserver] = None,
        on_progress: Optional[ProgressObserver] = None,
        verbose: bool = False,
    ) -> None:
        self._config = config
        self._caller = caller
        self._context_manager = context_manager
        self._compressor = compressor
        self._rot_detector = rot_detector
        self._attention = attention
        self._policy = policy
        self._features = features
        self._on_turn_complete = on_turn_complete
        self._on_progress = on_progress
        self._verbose = verbose
        self._started = time.monotonic()
        self._turn = 0
        self.sandbox: Optional[ScriptSandbox] = None

    # Observers

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def _report(self, phase: Phase) -> None:
        if self._on_progress is None:
            return
        progress = Progress(
            turn=self._turn,
            sub_call_count=self.sandbox.sub_call_count if self.sandbox else 0,
            phase=phase,
            elapsed_ms=self._elapsed_ms(),
        )
        try:
            self._on_progress(progress)
        except Exception as exc:  # noqa: BLE001
            telemetry.log("warning", "progress_observer_failed", error=str(exc))

    def _notify_turn(self, turn: Turn) -> None:
        if self._on_turn_complete is None:
            return
        try:
            self._on_turn_complete(turn)
        except Exception as exc:  # noqa: BLE001
            telemetry.log("warning", "turn_observer_failed", turn=turn.turn, error=str(exc))

    def _say(self, text: str) -> None:
        if self._verbose:
            print(text)

    # Delegation

    async def delegate(self, prompt: str) -> str:
        """Sub-model call made from inside a script via llm_query()."""
        self._report("sub-llm")
        self._say(f"  [Sub-LLM] {prompt[:60]}...")
        result = await self._caller.call_model(self._config.sub_model, prompt)
        if not self._features.context_compression:
            return result
        budget = self._compressor.get_max_result_length(DELEGATED_RESULT_BASE_LENGTH)
        compressed = self._compressor.compress_adaptively(result, budget)
        if len(compressed) < len(result):
            telemetry.log(
                "info",
                "delegated_result_compressed",
                level=self._compressor.get_compression_level().value,
                original=len(result),
                compressed=len(compressed),
            )
        return compressed

    # Loop

    def _result(self, turns: List[Turn], *, answer: Optional[str] = None, error: Optional[str] = None) -> RLMResult:
        return RLMResult(
            success=error is None,
            answer=answer,
            turns=turns,
            execution_time_ms=self._elapsed_ms(),
            sub_call_count=self.sandbox.sub_call_count if self.sandbox else 0,
            error=error,
            token_savings=(
                self._context_manager.get_token_savings_estimate()
                if self._features.context_compression
                else None
            ),
        )

    def _memory_injection(self, response: str) -> Optional[str]:
        indicators = self._rot_detector.analyze_response(response)
        if not indicators.detected:
            return None
        telemetry.log(
            "info",
            "context_rot_detected",
            turn=self._turn,
            confidence=indicators.confidence,
            recommendation=indicators.recommendation,
        )
        self._say(f"  [Context Rot] Detected (confidence: {indicators.confidence}%), {indicators.recommendation}")
        if indicators.recommendation not in ("inject_memory", "summarize"):
            return None
        bank = self._context_manager.get_memory_bank()
        if not bank:
            return None
        selected = self._attention.filter_by_attention(bank, MEMORY_INJECTION_SIZE)
        injection = self._rot_detector.generate_memory_injection(selected)
        return injection or None

    async def run(self, sandbox: ScriptSandbox, context: AnalysisContext, history: List[Message]) -> RLMResult:
        """
        Execute the turn loop until a final answer is accepted or a budget ends it.

        ``history`` is the full conversation and is extended in place.
        """
        self.sandbox = sandbox
        self._started = time.monotonic()
        turns: List[Turn] = []
        file_count = context.file_count
        required = self._policy(file_count)
        self._report("initializing")

        for turn_number in range(1, self._config.max_turns + 1):
            self._turn = turn_number
            if self._elapsed_ms() > self._config.timeout_ms:
                telemetry.log("info", "rlm_timeout", turn=turn_number, elapsed_ms=self._elapsed_ms())
                return self._result(turns, error="Timeout exceeded")

            self._say(f"\n--- Turn {turn_number} ---")
            self._report("analyzing")

            with telemetry.span("rlm.turn", turn=turn_number):
                view = history
                if self._features.context_compression:
                    view = self._context_manager.build_optimized_history(history, turn_number)
                    if len(view) < len(history):
                        self._say(f"  [Context] History optimized: {len(history)} -> {len(view)} messages")

                try:
                    response = await self._caller.call_conversation(self._config.root_model, view)
                except RLMProviderError as exc:
                    telemetry.log("error", "rlm_provider_failed", turn=turn_number, error=exc.to_dict())
                    return self._result(turns, error=str(exc) or exc.code)
                telemetry.log("info", "rlm_model_output", turn=turn_number, text=_trim_text(response, 2000))
                self._say(f"Response: {_trim_text(response)}...")

                injection = None
                if self._features.rot_detection:
                    injection = self._memory_injection(response)

                self._compressor.update_usage(estimate_tokens("".join(m.content for m in history)))

                code: Optional[str] = None
                execution_result: Optional[str] = None
                execution_error: Optional[str] = None
                if has_code_block(response):
                    self._report("executing")
                    code = extract_code(response)
                    outcome = await sandbox.execute(response)
                    if outcome.success:
                        execution_result = outcome.output
                    else:
                        execution_error = outcome.error or "Unknown error"
                    self._say(f"Output: {_trim_text(execution_result or execution_error)}...")
                    self._report("analyzing")
                    feedback = format_execution_feedback(outcome)
                else:
                    feedback = NUDGE_MESSAGE

                history.append(Message(role="assistant", content=response))
                history.append(Message(role="user", content=feedback))
                if injection:
                    history.append(Message(role="user", content=injection))
                    telemetry.log("info", "memory_injected", turn=turn_number)

                turn = Turn(
                    turn=turn_number,
                    response=response,
                    code=code,
                    execution_result=execution_result,
                    error=execution_error,
                    sub_call_count=sandbox.sub_call_count,
                )
                turns.append(turn)
                if self._features.context_compression:
                    self._context_manager.register_turn(turn_number, response, execution_result, execution_error)
                self._notify_turn(turn)

                final = sandbox.final_answer if sandbox.has_final_answer() else extract_text_final(response)
                if final is None:
                    continue

                current = sandbox.sub_call_count
                if current < required:
                    sandbox.clear_final_answer()
                    history.append(Message(role="user", content=format_rejection(current, required, file_count)))
                    telemetry.log(
                        "info",
                        "final_rejected",
                        turn=turn_number,
                        sub_calls=current,
                        required=required,
                    )
                    self._say(f"  [RLM] Insufficient sub-LLM calls: {current}/{required} required")
                    continue

                self._report("finalizing")
                telemetry.log("info", "rlm_final_accepted", turn=turn_number, sub_calls=current)
                return self._result(turns, answer=final)

        telemetry.log("info", "rlm_max_turns", max_turns=self._config.max_turns)
        return self._result(
            turns,
            error=f"Max turns ({self._config.max_turns}) exceeded. Partial output:\n{sandbox.output}",
        )
