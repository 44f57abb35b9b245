"""
Optional Logfire tracing for analysis sessions.

Everything here is a no-op unless logfire is importable and RLM_LOGFIRE is
set. Events and spans emitted inside ``session()`` carry that session's
``session_id`` and query number, so concurrent sessions can be told apart in
one trace stream. RLM_TELEMETRY_STDERR=1 echoes events to stderr without
needing logfire at all.
"""
from __future__ import annotations

import itertools
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator

_logfire = None
_configured = False

_session_attrs: ContextVar[Dict[str, Any]] = ContextVar("rlmscope_session_attrs", default={})
_query_counter = itertools.count(1)


def _load_logfire():
    global _logfire
    if _logfire is None:
        try:
            import logfire
        except Exception:
            _logfire = False
        else:
            _logfire = logfire
    return _logfire


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    return bool(_load_logfire()) and _flag("RLM_LOGFIRE")


def configure() -> bool:
    """Configure logfire once per process; False when telemetry is off."""
    global _configured
    if not enabled():
        return False
    if _configured:
        return True
    logfire = _load_logfire()
    try:
        logfire.configure(console=None if _flag("RLM_LOGFIRE_CONSOLE") else False)
    except Exception:
        return False
    _configured = True
    # Provider requests show up as child spans of the turn that made them.
    if _flag("RLM_LOGFIRE_INSTRUMENT_OPENAI", default=True):
        try:
            logfire.instrument_openai()
        except Exception:
            pass
    return True


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def current_attrs() -> Dict[str, Any]:
    """Attributes bound by the innermost ``session()``; empty outside one."""
    return dict(_session_attrs.get())


@contextmanager
def session(session_id: str, **attrs: Any) -> Iterator[Dict[str, Any]]:
    """
    Bind ``session_id`` and a process-wide query number to every event and
    span emitted in this context. Bindings follow asyncio tasks, so sessions
    gathered side by side keep their own ids.
    """
    bound = {**_session_attrs.get(), "session_id": session_id, "query": next(_query_counter), **attrs}
    token = _session_attrs.set(bound)
    try:
        yield dict(bound)
    finally:
        _session_attrs.reset(token)


def _with_session(attrs: Dict[str, Any]) -> Dict[str, Any]:
    return {**_session_attrs.get(), **attrs}


def _echo(message: str, attrs: Dict[str, Any]) -> None:
    try:
        print(f"[rlmscope] {message} {attrs}", file=sys.stderr)
    except Exception:
        pass


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    if not configure():
        yield
        return
    try:
        ctx = _load_logfire().span(name, **_with_session(attrs))
        ctx.__enter__()
    except Exception:
        yield
        return
    exc_info = (None, None, None)
    try:
        yield
    except BaseException as exc:
        exc_info = (type(exc), exc, exc.__traceback__)
        raise
    finally:
        try:
            ctx.__exit__(*exc_info)
        except Exception:
            pass


def log(level: str, message: str, /, **attrs: Any) -> None:
    attrs = _with_session(attrs)
    if configure():
        logfire = _load_logfire()
        emit = getattr(logfire, level, None) or logfire.info
        try:
            emit(message, **attrs)
        except Exception:
            return
    if _flag("RLM_TELEMETRY_STDERR"):
        _echo(message, attrs)
