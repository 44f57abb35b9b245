"""
RLM orchestrator: public entry point for recursive codebase analysis.

Owns the context-engineering subsystems and builds one sandbox and one
turn runner per query. Subsystem state (memory bank, rot window,
refinement history) resets at the start of every query.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from rlmscope import telemetry
from rlmscope.config import resolve_session_config
from rlmscope.models import (
    AnalysisContext,
    ContextUsageMetrics,
    Message,
    ParallelBatchResult,
    RefinementPassResult,
    RLMResult,
    SessionConfig,
    TokenSavings,
)
from rlmscope.providers.base import BaseProvider
from rlmscope.repl.sandbox import ScriptSandbox
from rlmscope.rlm.attention import SelectiveAttention
from rlmscope.rlm.compression import AdaptiveCompressionConfig, AdaptiveCompressor
from rlmscope.rlm.context_manager import ContextManager, ContextManagerConfig
from rlmscope.rlm.llm_executor import ModelCaller
from rlmscope.rlm.parallel import ParallelExecutionConfig, ParallelExecutor, QueryItem, describe
from rlmscope.rlm.policy import DelegationPolicy, min_sub_calls
from rlmscope.rlm.prompts import build_initial_prompt
from rlmscope.rlm.refinement import IterativeRefiner, RefinementConfig
from rlmscope.rlm.rot import ContextRotDetector
from rlmscope.rlm.runner import ProgressObserver, RunnerFeatures, TurnObserver, TurnRunner


@dataclass
class AdvancedFeatures:
    enable_context_compression: bool = True
    enable_parallel_execution: bool = True
    enable_context_rot_detection: bool = True
    enable_iterative_refinement: bool = False
    max_context_tokens: int = 100_000
    parallel: ParallelExecutionConfig = field(default_factory=ParallelExecutionConfig)
    compression: AdaptiveCompressionConfig = field(default_factory=AdaptiveCompressionConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)


class RLMOrchestrator:
    """
    Answers a question about a file map by running the delegation loop.

    Example:
        orchestrator = RLMOrchestrator(provider, max_turns=8)
        result = await orchestrator.process_query("How is auth wired?", files)
    """

    def __init__(
        self,
        provider: BaseProvider,
        config: Optional[SessionConfig] = None,
        *,
        context_config: Optional[ContextManagerConfig] = None,
        advanced: Optional[AdvancedFeatures] = None,
        delegation_policy: DelegationPolicy = min_sub_calls,
        verbose: bool = False,
        **overrides: Any,
    ) -> None:
        self.config = config or resolve_session_config(**overrides)
        self.provider = provider
        self.advanced = advanced or AdvancedFeatures()
        self.delegation_policy = delegation_policy
        self.verbose = verbose

        self.caller = ModelCaller(provider, fallback_model=self.config.fallback_model, verbose=verbose)
        self.context_manager = ContextManager(context_config)
        self.compressor = AdaptiveCompressor(self.advanced.max_context_tokens, self.advanced.compression)
        self.rot_detector = ContextRotDetector()
        self.attention = SelectiveAttention()
        self.parallel_executor = ParallelExecutor(self.advanced.parallel)
        self.refiner = IterativeRefiner(self.advanced.refinement)
        self._sandbox: Optional[ScriptSandbox] = None
        self.session_id = telemetry.new_session_id()

    def _reset_for_query(self, query: str) -> None:
        self.context_manager.reset()
        self.rot_detector.reset()
        self.refiner.reset()
        self.compressor.update_usage(0)
        self.attention.reset_weights()
        self.attention.set_query_context(query)
        self.attention.adjust_weights_for_query(query)

    async def process_query(
        self,
        query: str,
        context: Union[AnalysisContext, Mapping[str, str]],
        on_turn_complete: Optional[TurnObserver] = None,
        on_progress: Optional[ProgressObserver] = None,
    ) -> RLMResult:
        if not isinstance(context, AnalysisContext):
            context = AnalysisContext(files=dict(context), mode=self.config.mode)
        self._reset_for_query(query)

        runner = TurnRunner(
            config=self.config,
            caller=self.caller,
            context_manager=self.context_manager,
            compressor=self.compressor,
            rot_detector=self.rot_detector,
            attention=self.attention,
            policy=self.delegation_policy,
            features=RunnerFeatures(
                context_compression=self.advanced.enable_context_compression,
                rot_detection=self.advanced.enable_context_rot_detection,
            ),
            on_turn_complete=on_turn_complete,
            on_progress=on_progress,
            verbose=self.verbose,
        )
        sandbox = ScriptSandbox(
            context.files,
            max_sub_calls=self.config.max_sub_calls,
            delegate=runner.delegate,
        )
        self._sandbox = sandbox
        required_calls = self.delegation_policy(context.file_count)
        prompt = build_initial_prompt(context.mode, context.paths, query, required_calls)
        history = [Message(role="user", content=prompt)]

        with telemetry.session(self.session_id), telemetry.span(
            "rlm.query",
            root_model=self.config.root_model,
            sub_model=self.config.sub_model,
            files=context.file_count,
            required_calls=required_calls,
        ):
            result = await runner.run(sandbox, context, history)
            if result.success and self.advanced.enable_iterative_refinement:
                result = await self._refine(result, query)

            telemetry.log(
                "info",
                "rlm_query_complete",
                success=result.success,
                turns=len(result.turns),
                sub_calls=result.sub_call_count,
                execution_time_ms=result.execution_time_ms,
            )
        return result

    async def _refine(self, result: RLMResult, query: str) -> RLMResult:
        started = time.monotonic()

        async def generate(prompt: str) -> str:
            return await self.caller.call_model(self.config.root_model, prompt)

        answer = await self.refiner.refine(result.answer or "", query, generate)
        return result.model_copy(
            update={
                "answer": answer,
                "refinement": self.refiner.get_history(),
                "execution_time_ms": result.execution_time_ms + int((time.monotonic() - started) * 1000),
            }
        )

    async def execute_parallel_queries(self, queries: Iterable[QueryItem]) -> ParallelBatchResult:
        """
        Run independent sub-model queries outside the turn loop.

        Sequential (concurrency 1, no retry) when parallel execution is off.
        """

        async def delegate(prompt: str) -> str:
            return await self.caller.call_model(self.config.sub_model, prompt)

        executor = self.parallel_executor
        if not self.advanced.enable_parallel_execution:
            executor = ParallelExecutor(
                ParallelExecutionConfig(
                    max_concurrent=1,
                    call_timeout=self.advanced.parallel.call_timeout,
                    fail_fast=self.advanced.parallel.fail_fast,
                    retry_count=0,
                )
            )
        batch = await executor.execute_batch(queries, delegate)
        telemetry.log("info", "parallel_batch_complete", **describe(batch))
        return batch

    # Inspection

    def get_context_manager(self) -> ContextManager:
        return self.context_manager

    def get_selective_attention(self) -> SelectiveAttention:
        return self.attention

    def get_parallel_executor(self) -> ParallelExecutor:
        return self.parallel_executor

    def get_token_savings(self) -> TokenSavings:
        return self.context_manager.get_token_savings_estimate()

    def get_compression_metrics(self) -> ContextUsageMetrics:
        return self.compressor.get_metrics(
            memory_bank_size=len(self.context_manager.get_memory_bank()),
            compressed_turns_count=len(self.context_manager.get_compressed_history()),
        )

    def get_context_rot_stats(self) -> Dict[str, float]:
        return self.rot_detector.get_stats()

    def get_refinement_history(self) -> List[RefinementPassResult]:
        return self.refiner.get_history()

    def evaluate_result_quality(self, result: str, query: str) -> int:
        return self.refiner.evaluate_quality(result, query)

    @property
    def sandbox(self) -> Optional[ScriptSandbox]:
        """Sandbox of the most recent query."""
        return self._sandbox
