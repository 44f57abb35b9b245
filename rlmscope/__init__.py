"""
rlmscope - Ask questions about codebases too large for one model call.

Module-level API:
    import rlmscope

    result = rlmscope.analyze("Where is input validated?", files)

Configured instances:
    from rlmscope import RLMOrchestrator
    from rlmscope.providers import create_provider

    orchestrator = RLMOrchestrator(create_provider("openrouter"), root_model="smart")
    result = await orchestrator.process_query(query, files)
"""

from rlmscope.api import analyze, analyze_files  # noqa: F401
from rlmscope.config import get_settings, resolve_session_config  # noqa: F401
from rlmscope.rlm import AdvancedFeatures, RLMOrchestrator  # noqa: F401

from rlmscope.models import (  # noqa: F401
    AnalysisContext,
    MemoryEntry,
    Progress,
    RLMResult,
    SessionConfig,
    Turn,
)

from rlmscope.exceptions import (  # noqa: F401
    DelegationLimitExceeded,
    RLMConfigError,
    RLMError,
    RLMProviderError,
    RLMSandboxError,
    SecurityViolation,
)

__version__ = "0.1.0"
