"""
Script sandbox for model-written analysis code.

Design: pure functions for parsing and compilation, a thin class that owns
one session's namespace and state. The namespace is the capability set:
scripts can reach the file map, the path list, print, llm_query and FINAL,
plus a short list of harmless builtins. Nothing else is reachable.
"""
from __future__ import annotations

import ast
import builtins
import inspect
import re
import types
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from rlmscope import telemetry
from rlmscope.exceptions import DelegationLimitExceeded, RLMSandboxError, SecurityViolation
from rlmscope.models import ExecutorResult
from rlmscope.repl.safe import ALLOWED_IMPORTS, validate_script

Delegate = Callable[[str], Awaitable[str]]

_CODE_BLOCK = re.compile(r"```(?:python3?|py|repl)?[ \t]*\n(.*?)```", re.DOTALL)

DEFAULT_OUTPUT_CHAR_LIMIT = 20_000


@dataclass
class SandboxState:
    """Mutable per-session state. One instance per session, never shared."""

    output: List[str] = field(default_factory=list)
    current: List[str] = field(default_factory=list)
    sub_call_count: int = 0
    final_answer: Optional[str] = None
    delegating_helpers: Set[str] = field(default_factory=set)


def extract_code(text: str) -> str:
    """First fenced block, or the whole text when there is none."""
    match = _CODE_BLOCK.search(text)
    if match:
        return match.group(1)
    return text


def is_finalize_only(code: str) -> bool:
    """True when the script is exactly FINAL("<string literal>")."""
    try:
        tree = ast.parse(code.strip())
    except SyntaxError:
        return False
    if len(tree.body) != 1 or not isinstance(tree.body[0], ast.Expr):
        return False
    call = tree.body[0].value
    return (
        isinstance(call, ast.Call)
        and isinstance(call.func, ast.Name)
        and call.func.id == "FINAL"
        and len(call.args) == 1
        and not call.keywords
        and isinstance(call.args[0], ast.Constant)
        and isinstance(call.args[0].value, str)
    )


def truncate_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n[... output truncated ...]"


def build_safe_builtins(allowed_imports: Set[str]) -> Dict[str, Any]:
    safe_names = [
        "abs",
        "all",
        "any",
        "bool",
        "dict",
        "enumerate",
        "filter",
        "float",
        "int",
        "isinstance",
        "len",
        "list",
        "map",
        "max",
        "min",
        "range",
        "repr",
        "reversed",
        "round",
        "set",
        "sorted",
        "str",
        "sum",
        "tuple",
        "zip",
        "Exception",
        "IndexError",
        "KeyError",
        "TypeError",
        "ValueError",
    ]
    safe = {name: getattr(builtins, name) for name in safe_names}

    def restricted_import(name: str, *args: Any, **kwargs: Any) -> types.ModuleType:
        if name.split(".")[0] in allowed_imports:
            return __import__(name, *args, **kwargs)
        raise ImportError(f"Import blocked: {name}")

    safe["__import__"] = restricted_import
    return safe


def _calls_any(node: ast.AST, names: Set[str]) -> bool:
    return any(
        isinstance(child, ast.Call) and isinstance(child.func, ast.Name) and child.func.id in names
        for child in ast.walk(node)
    )


def find_delegating_functions(tree: ast.AST, known: Iterable[str] = ()) -> Set[str]:
    """
    Names of functions that reach llm_query, directly or through each other.

    ``known`` carries helpers defined by earlier scripts in the session.
    The result always includes ``llm_query`` itself.
    """
    names = {"llm_query", *known}
    defs = [node for node in ast.walk(tree) if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))]
    changed = True
    while changed:
        changed = False
        for node in defs:
            if node.name in names:
                continue
            if isinstance(node, ast.AsyncFunctionDef) or _calls_any(node, names):
                names.add(node.name)
                changed = True
    return names


class _AwaitDelegation(ast.NodeTransformer):
    """
    Wrap bare llm_query(...) calls, and calls to helpers that reach it, in
    await so scripts may omit it. Plain defs that reach llm_query become
    async defs.
    """

    def __init__(self, delegating: Set[str]) -> None:
        self.delegating = delegating

    def visit_Await(self, node: ast.Await) -> ast.AST:
        # Already awaited; still visit the arguments for nested calls.
        if isinstance(node.value, ast.Call):
            node.value.args = [self.visit(arg) for arg in node.value.args]
            node.value.keywords = [self.visit(kw) for kw in node.value.keywords]
            return node
        return self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> ast.AST:
        self.generic_visit(node)
        if isinstance(node.func, ast.Name) and node.func.id in self.delegating:
            return ast.copy_location(ast.Await(value=node), node)
        return node

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        self.generic_visit(node)
        if node.name not in self.delegating:
            return node
        fields = {name: getattr(node, name) for name in node._fields if hasattr(node, name)}
        return ast.copy_location(ast.AsyncFunctionDef(**fields), node)

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        if _calls_any(node, self.delegating):
            raise RLMSandboxError(
                "llm_query() cannot be called inside a lambda; use a def helper instead",
                code="delegation_in_lambda",
            )
        return node


def _add_repl_echo(tree: ast.Module) -> None:
    """Print the final bare expression like a REPL when it is not None."""
    if not tree.body or not isinstance(tree.body[-1], ast.Expr):
        return
    last = tree.body[-1].value
    if isinstance(last, ast.Call) and isinstance(last.func, ast.Name) and last.func.id in {"print", "FINAL"}:
        return
    temp = "_script_last_expr"
    tree.body[-1] = ast.Assign(targets=[ast.Name(id=temp, ctx=ast.Store())], value=last)
    check = ast.Compare(
        left=ast.Name(id=temp, ctx=ast.Load()),
        ops=[ast.IsNot()],
        comparators=[ast.Constant(value=None)],
    )
    echo = ast.Expr(
        value=ast.Call(
            func=ast.Name(id="print", ctx=ast.Load()),
            args=[ast.Name(id=temp, ctx=ast.Load())],
            keywords=[],
        )
    )
    tree.body.append(ast.If(test=check, body=[echo], orelse=[]))


def compile_script(code: str, known_helpers: Iterable[str] = ()) -> Tuple[types.CodeType, Set[str]]:
    """
    Parse, auto-await delegation, echo the last expression, compile.

    Returns the code object and the names of functions that reach
    llm_query, so later scripts can await calls to them too.
    """
    tree = ast.parse(code, filename="<script>", mode="exec")
    delegating = find_delegating_functions(tree, known_helpers)
    tree = _AwaitDelegation(delegating).visit(tree)
    _add_repl_echo(tree)
    ast.fix_missing_locations(tree)
    delegating.discard("llm_query")
    return compile(tree, "<script>", "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT), delegating


def _reject_coroutine(value: Any, where: str) -> None:
    if inspect.iscoroutine(value):
        value.close()
        raise RLMSandboxError(
            f"{where}() received an un-awaited llm_query() result; call llm_query directly or await it",
            code="unawaited_delegation",
        )


class ScriptSandbox:
    """
    Runs one session's scripts against a fixed file map.

    Namespace persists across execute() calls, so a variable assigned on
    turn 2 is still there on turn 3.
    """

    def __init__(
        self,
        files: Mapping[str, str],
        *,
        max_sub_calls: int = 15,
        delegate: Optional[Delegate] = None,
        allowed_imports: Optional[Iterable[str]] = None,
        output_char_limit: int = DEFAULT_OUTPUT_CHAR_LIMIT,
    ) -> None:
        self._files = types.MappingProxyType(dict(files))
        self._max_sub_calls = max_sub_calls
        self._delegate = delegate
        self._allowed_imports = set(ALLOWED_IMPORTS if allowed_imports is None else allowed_imports)
        self._output_char_limit = output_char_limit
        self.state = SandboxState()
        self._namespace = self._build_namespace()

    def _build_namespace(self) -> Dict[str, Any]:
        state = self.state

        def script_print(*args: Any, sep: str = " ", end: str = "\n") -> None:
            for arg in args:
                _reject_coroutine(arg, "print")
            text = sep.join(str(arg) for arg in args)
            if end and end != "\n":
                text += end
            state.current.append(text)
            state.output.append(text)

        async def llm_query(prompt: Any) -> str:
            if state.sub_call_count >= self._max_sub_calls:
                raise DelegationLimitExceeded(self._max_sub_calls)
            if self._delegate is None:
                raise RLMSandboxError("Sub-LLM callback not configured", code="delegate_missing")
            state.sub_call_count += 1
            return await self._delegate(str(prompt))

        def final(answer: Any) -> None:
            _reject_coroutine(answer, "FINAL")
            state.final_answer = answer if isinstance(answer, str) else str(answer)

        return {
            "__builtins__": build_safe_builtins(self._allowed_imports),
            "file_index": self._files,
            "files": list(self._files.keys()),
            "print": script_print,
            "llm_query": llm_query,
            "FINAL": final,
        }

    async def execute(self, raw: str) -> ExecutorResult:
        """
        Extract, check, and run a script.

        Failures come back as ExecutorResult(success=False) with the literal
        error text; nothing here raises.
        """
        code = extract_code(raw)
        if not is_finalize_only(code):
            try:
                validate_script(code, self._allowed_imports)
            except SecurityViolation as exc:
                telemetry.log("warning", "script_rejected", reason=exc.reason)
                return ExecutorResult(success=False, output="", error=f"Security violation: {exc.reason}")

        self.state.current = []
        try:
            compiled, helpers = compile_script(code, self.state.delegating_helpers)
            self.state.delegating_helpers.update(helpers)
            result = eval(compiled, self._namespace)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            return ExecutorResult(
                success=False,
                output=self._turn_output(),
                error=f"{type(exc).__name__}: {exc}",
            )
        return ExecutorResult(success=True, output=self._turn_output())

    def _turn_output(self) -> str:
        return truncate_output("\n".join(self.state.current), self._output_char_limit)

    @property
    def sub_call_count(self) -> int:
        return self.state.sub_call_count

    @property
    def output(self) -> str:
        return "\n".join(self.state.output)

    @property
    def final_answer(self) -> Optional[str]:
        return self.state.final_answer

    def has_final_answer(self) -> bool:
        return self.state.final_answer is not None

    def clear_final_answer(self) -> None:
        self.state.final_answer = None

    def reset(self) -> None:
        self.state = SandboxState()
        self._namespace = self._build_namespace()

    @property
    def namespace(self) -> Dict[str, Any]:
        """Direct access to namespace (for testing/inspection)."""
        return self._namespace
