"""
System prompt and context message templates.

The root model writes Python scripts; these strings describe the script
environment exposed by rlmscope.repl.sandbox and the delegation minimums
enforced by rlmscope.rlm.policy.
"""
from __future__ import annotations

from typing import Dict, Sequence

CODE_ANALYSIS_PROMPT = """You are an expert code analyst using Recursive Language Models (RLMs).
Your task is to analyze codebases by writing and executing Python code, delegating focused analysis to sub-LLMs.

## Environment Variables
- `file_index`: read-only mapping of file path -> file contents
- `files`: list of all file paths

## Available Functions
- `print(x)`: Output text or data; printed output comes back to you as the result
- `llm_query(prompt)`: **KEY FEATURE** - Delegate analysis to a sub-LLM, returns a string. Use this to analyze individual files.
- `FINAL("answer")`: **REQUIRED** - Call this with your complete answer when done

Allowed imports: re, math, json, collections, itertools, functools, textwrap.
No file, network, or process access is available. Variables persist between turns.

## Code Rules
- Put exactly ONE ```python block in each response; only the first block runs
- `llm_query(...)` may be written with or without `await`, also inside `def` helpers (not lambdas)
- Slice file contents before delegating: `file_index[path][:3000]`
- Keep printed output short; print summaries, not whole files

## Recommended Workflow
1. **Explore**: `print(files[:20])` to see available files
2. **Identify key files**: entry points, configs, core modules
3. **Delegate analysis**: `llm_query()` on 3-5 key files
4. **Synthesize**: combine the sub-LLM analyses into your answer
5. **FINAL()**: call it with your comprehensive answer

## Example
```python
print(f"Total files: {len(files)}")
print(files[:15])

entry = next((f for f in files if f.endswith(("main.py", "__init__.py", "index.ts"))), None)
entry_info = llm_query(f"List main exports and purpose (be concise):\\n{file_index[entry][:2000]}") if entry else ""
print("Entry:", entry_info[:300])

manifest = next((f for f in files if f.endswith(("pyproject.toml", "package.json", "go.mod"))), None)
stack = llm_query(f"List tech stack and key dependencies (bullet points):\\n{file_index[manifest][:2000]}") if manifest else ""
print("Stack:", stack[:300])
```

## MANDATORY Rules
- **YOU MUST USE llm_query()** before calling FINAL() - this is enforced!
- The codebase context below states the minimum number of llm_query() calls
- FINAL() will be REJECTED if you don't make enough llm_query() calls

Make MULTIPLE llm_query() calls - this is how you get quality analysis!"""

_MODE_FOCUS: Dict[str, str] = {
    "code-analysis": "",
    "document-qa": "\n\nThe files are documents rather than source code. Answer from their text and cite the file each fact comes from.",
    "education": "\n\nExplain findings for a learner: define terms, walk through how the pieces connect, and point to files worth reading first.",
}

ANALYSIS_PROMPTS: Dict[str, str] = {
    "architecture": """Analyze the architecture of this codebase. Focus on:
1. Directory structure and organization
2. Key modules and their responsibilities
3. Dependencies and data flow between components
4. Design patterns used
5. Entry points and main application flow

Provide a structured analysis with clear sections.""",
    "dependencies": """Analyze the dependencies in this codebase:
1. External packages/libraries used
2. Internal module dependencies
3. Circular dependency risks
4. Tightly coupled components
5. Suggestions for decoupling

Create a dependency map and highlight any concerns.""",
    "security": """Perform a security analysis of this codebase:
1. Input validation patterns
2. Authentication/authorization flows
3. Data sanitization
4. Sensitive data handling
5. Common vulnerabilities (OWASP Top 10)
6. API security patterns

List findings by severity (Critical, High, Medium, Low).""",
    "performance": """Analyze performance characteristics:
1. Potential bottlenecks
2. Memory usage patterns
3. Async/await usage
4. Caching strategies
5. Database query patterns
6. Bundle or artifact size considerations

Provide specific recommendations for optimization.""",
    "refactor": """Identify refactoring opportunities:
1. Code duplication
2. Long methods/functions
3. Complex conditionals
4. God classes/modules
5. Dead code
6. Inconsistent patterns

Prioritize suggestions by impact and effort.""",
    "summary": """Provide a comprehensive summary of this codebase:
1. Purpose and main functionality
2. Tech stack and frameworks
3. Key features
4. Code organization
5. Notable patterns or approaches
6. Potential improvements

Keep it concise but informative.""",
}


def get_system_prompt(mode: str) -> str:
    return CODE_ANALYSIS_PROMPT + _MODE_FOCUS.get(mode, "")


def get_analysis_prompt(analysis_type: str) -> str:
    """Canned query for a named analysis type; empty for unknown types."""
    return ANALYSIS_PROMPTS.get(analysis_type, "")


def recommended_calls(file_count: int) -> str:
    if file_count > 100:
        return "5-7"
    if file_count > 50:
        return "4-5"
    return "3-4"


def _minimum_warning(required_calls: int) -> str:
    if required_calls <= 0:
        return "No minimum number of llm_query() calls is enforced for this codebase."
    noun = "call" if required_calls == 1 else "calls"
    return f"WARNING: FINAL() will be REJECTED if you don't make at least {required_calls} llm_query() {noun}!"


def build_context_message(file_count: int, paths: Sequence[str], query: str, required_calls: int) -> str:
    """Per-query context. ``required_calls`` is the minimum the delegation policy enforces."""
    preview = "\n  ".join(paths[:30])
    truncated = f"\n  ... and {len(paths) - 30} more" if len(paths) > 30 else ""
    large = " (LARGE CODEBASE - use many sub-LLM calls!)" if file_count > 100 else ""
    calls = recommended_calls(file_count)
    return f"""## Codebase Context
Files loaded: {file_count}{large}

File list:
  {preview}{truncated}

## Your Task
{query}

## Instructions
1. First, explore: `print(files[:20])`
2. **Make {calls} llm_query() calls** to analyze different aspects:
   - Entry point / main module
   - Config or manifest files (pyproject.toml, package.json, ...)
   - Core services or modules
3. Synthesize the sub-LLM analyses into a comprehensive final answer
4. Call FINAL("your answer") with your complete analysis

{_minimum_warning(required_calls)}"""


def build_initial_prompt(mode: str, paths: Sequence[str], query: str, required_calls: int) -> str:
    context = build_context_message(len(paths), paths, query, required_calls)
    return f"{get_system_prompt(mode)}\n\n{context}"
