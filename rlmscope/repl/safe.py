"""
Static checks applied to model-written scripts before they run.

Two layers, both raising SecurityViolation on the first problem:
1. A deny-list of name patterns for process, file, network, and dynamic
   evaluation primitives. String literal contents are blanked first so prose
   such as "uses eval() internally" inside a prompt never trips it.
2. An AST pass that blocks imports outside the allowlist, dunder access,
   and direct references to denied builtins.

Neither layer is the security boundary. The sandbox namespace simply does
not hold these capabilities; the checks give the model a clear rejection
instead of a confusing NameError.
"""
from __future__ import annotations

import ast
import io
import re
import tokenize
from typing import FrozenSet, Iterable, List, Optional, Pattern, Tuple

from rlmscope.exceptions import SecurityViolation


ALLOWED_IMPORTS: FrozenSet[str] = frozenset(
    {"re", "math", "json", "collections", "itertools", "functools", "textwrap"}
)

# Builtins that no script may name. Prefix (?<![\w.]) lets re.compile() or
# obj.open() through while catching the bare builtin.
_BUILTIN_CALLS = (
    "eval",
    "exec",
    "compile",
    "open",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "breakpoint",
    "input",
)

_MODULE_ACCESS = (
    "os",
    "sys",
    "subprocess",
    "socket",
    "shutil",
    "pathlib",
    "requests",
    "urllib",
    "httpx",
    "importlib",
    "ctypes",
    "pickle",
    "asyncio",
)

DENIED_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("__import__", re.compile(r"__import__")),
    *((f"{name}(", re.compile(rf"(?<![\w.]){name}\s*\(")) for name in _BUILTIN_CALLS),
    *((f"{name}.", re.compile(rf"(?<![\w.]){name}\s*\.")) for name in _MODULE_ACCESS),
)

DENIED_NAMES: FrozenSet[str] = frozenset(_BUILTIN_CALLS) | {"__import__"}

_FSTRING_MIDDLE = getattr(tokenize, "FSTRING_MIDDLE", None)


def mask_string_literals(code: str) -> str:
    """
    Blank out string literal text, preserving offsets and newlines.

    Expressions inside f-string braces stay visible on interpreters that
    tokenize f-strings. Untokenizable input is returned unchanged so the
    deny-list errs toward rejecting.
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(code).readline))
    except (tokenize.TokenError, SyntaxError):
        return code

    line_starts: List[int] = [0]
    for line in code.split("\n"):
        line_starts.append(line_starts[-1] + len(line) + 1)

    chars = list(code)
    for tok in tokens:
        if tok.type != tokenize.STRING and tok.type != _FSTRING_MIDDLE:
            continue
        start = line_starts[tok.start[0] - 1] + tok.start[1]
        end = line_starts[tok.end[0] - 1] + tok.end[1]
        for index in range(start, min(end, len(chars))):
            if chars[index] != "\n":
                chars[index] = " "
    return "".join(chars)


def check_denied_patterns(code: str) -> None:
    scrubbed = mask_string_literals(code)
    for label, pattern in DENIED_PATTERNS:
        if pattern.search(scrubbed):
            raise SecurityViolation(f"Blocked pattern: {label}")


def validate_code_safety(code: str, allowed_imports: Optional[Iterable[str]] = None) -> None:
    """Reject high-risk Python constructs before execution.

    Args:
        code: Python code to validate
        allowed_imports: Module names allowed for import (None = ALLOWED_IMPORTS)
    """
    try:
        tree = ast.parse(code)
    except SyntaxError:
        # Let execution surface syntax errors to keep feedback consistent.
        return

    allowed = ALLOWED_IMPORTS if allowed_imports is None else frozenset(allowed_imports)
    violations: List[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name.split(".")[0] not in allowed:
                    violations.append(f"import blocked: {alias.name}")
        elif isinstance(node, ast.ImportFrom):
            if not node.module or node.module.split(".")[0] not in allowed:
                violations.append(f"import blocked: {node.module or '.'}")
        elif isinstance(node, ast.Attribute) and node.attr.startswith("__"):
            violations.append(f"dunder attribute blocked: {node.attr}")
        elif isinstance(node, ast.Name):
            if node.id.startswith("__"):
                violations.append(f"dunder name blocked: {node.id}")
            elif node.id in DENIED_NAMES:
                violations.append(f"builtin blocked: {node.id}")

    if violations:
        raise SecurityViolation("; ".join(violations))


def validate_script(code: str, allowed_imports: Optional[Iterable[str]] = None) -> None:
    """Run both layers. Raises SecurityViolation."""
    check_denied_patterns(code)
    validate_code_safety(code, allowed_imports)
