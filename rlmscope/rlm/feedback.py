"""
Messages the orchestrator feeds back to the root model between turns.

Single responsibility: translate execution outcomes and protocol decisions
into the next user message. Execution errors are passed through verbatim.
"""

from __future__ import annotations

import re
from typing import Optional

from rlmscope.models import ExecutorResult

NUDGE_MESSAGE = (
    'Please write Python code to analyze the codebase, or use FINAL("your answer") '
    "if you have the answer."
)

# FINAL("...") written directly in prose, outside any executed block.
_TEXT_FINAL = re.compile(r"""FINAL\s*\(\s*["'`]([\s\S]*?)["'`]\s*\)""")


def has_code_block(response: str) -> bool:
    return "```" in response


def extract_text_final(response: str) -> Optional[str]:
    match = _TEXT_FINAL.search(response)
    return match.group(1) if match else None


def format_execution_feedback(result: ExecutorResult) -> str:
    if result.success:
        return f"Result:\n```\n{result.output}\n```"
    error = result.error or "Unknown error"
    return f"Error:\n```\n{error}\n```\n\nPlease fix the code and try again."


def format_rejection(current: int, required: int, file_count: int) -> str:
    """Corrective message for a final answer offered before enough delegation."""
    shortfall = required - current
    return (
        f"INSUFFICIENT ANALYSIS: You made only {current} sub-LLM calls, but this codebase "
        f"({file_count} files) requires at least {required} llm_query() calls for quality analysis.\n\n"
        "Your FINAL() was rejected. You MUST use llm_query() to analyze more files before "
        "providing your final answer.\n\n"
        "Suggested files to analyze with llm_query():\n"
        "- Entry points (main.py, index.ts, App.tsx)\n"
        "- Config files (pyproject.toml, package.json)\n"
        "- Core services or modules\n"
        "- Type definitions\n\n"
        "Example:\n"
        "```python\n"
        "analysis = llm_query(f\"Analyze this file for architecture patterns:\\n{file_index[files[0]][:3000]}\")\n"
        "print(analysis)\n"
        "```\n\n"
        f"Make {shortfall} more llm_query() calls, then call FINAL() with your comprehensive analysis."
    )
