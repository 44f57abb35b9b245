"""
Module-level entry points.

    import rlmscope

    result = rlmscope.analyze("Summarize the architecture", files)
    print(result.answer)

The async form, analyze_files(), is the one to use inside an event loop.
"""
from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

from rlmscope.models import RLMResult
from rlmscope.providers import create_provider
from rlmscope.providers.base import BaseProvider
from rlmscope.rlm.orchestrator import RLMOrchestrator
from rlmscope.rlm.prompts import get_analysis_prompt
from rlmscope.rlm.runner import ProgressObserver, TurnObserver


def build_query(query: Optional[str] = None, analysis_type: Optional[str] = None) -> str:
    """Explicit query, a canned analysis prompt, or both joined."""
    canned = get_analysis_prompt(analysis_type) if analysis_type else ""
    if query and canned:
        return f"{query}\n\n{canned}"
    query = query or canned
    if not query:
        raise ValueError("Provide a query or a known analysis_type")
    return query


async def analyze_files(
    query: Optional[str],
    files: Mapping[str, str],
    *,
    provider: Optional[BaseProvider] = None,
    provider_name: str = "openai",
    analysis_type: Optional[str] = None,
    on_turn_complete: Optional[TurnObserver] = None,
    on_progress: Optional[ProgressObserver] = None,
    verbose: bool = False,
    **config: Any,
) -> RLMResult:
    """
    Analyze ``files`` (path -> content) and return the session result.

    ``config`` accepts SessionConfig fields (root_model, max_turns, ...).
    """
    orchestrator = RLMOrchestrator(
        provider or create_provider(provider_name),
        verbose=verbose,
        **config,
    )
    return await orchestrator.process_query(
        build_query(query, analysis_type),
        files,
        on_turn_complete=on_turn_complete,
        on_progress=on_progress,
    )


def analyze(query: Optional[str], files: Mapping[str, str], **kwargs: Any) -> RLMResult:
    """Blocking wrapper around analyze_files()."""
    return asyncio.run(analyze_files(query, files, **kwargs))
