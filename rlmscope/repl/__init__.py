from rlmscope.repl.safe import ALLOWED_IMPORTS, DENIED_PATTERNS, validate_script
from rlmscope.repl.sandbox import (
    ScriptSandbox,
    SandboxState,
    extract_code,
    is_finalize_only,
)

__all__ = [
    "ALLOWED_IMPORTS",
    "DENIED_PATTERNS",
    "ScriptSandbox",
    "SandboxState",
    "extract_code",
    "is_finalize_only",
    "validate_script",
]
