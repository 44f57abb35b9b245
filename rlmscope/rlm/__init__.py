from rlmscope.rlm.attention import AttentionWeights, SelectiveAttention
from rlmscope.rlm.compression import AdaptiveCompressionConfig, AdaptiveCompressor, estimate_tokens
from rlmscope.rlm.context_manager import ContextManager, ContextManagerConfig
from rlmscope.rlm.orchestrator import AdvancedFeatures, RLMOrchestrator
from rlmscope.rlm.parallel import ParallelExecutionConfig, ParallelExecutor
from rlmscope.rlm.policy import min_sub_calls
from rlmscope.rlm.refinement import IterativeRefiner, RefinementConfig
from rlmscope.rlm.rot import ContextRotDetector

__all__ = [
    "AdaptiveCompressionConfig",
    "AdaptiveCompressor",
    "AdvancedFeatures",
    "AttentionWeights",
    "ContextManager",
    "ContextManagerConfig",
    "ContextRotDetector",
    "IterativeRefiner",
    "ParallelExecutionConfig",
    "ParallelExecutor",
    "RLMOrchestrator",
    "RefinementConfig",
    "SelectiveAttention",
    "estimate_tokens",
    "min_sub_calls",
]
