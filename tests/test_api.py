from __future__ import annotations

import pytest

import rlmscope
from rlmscope.api import build_query
from rlmscope.config import reset_settings
from tests.providers.mock_provider import MockProvider


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    for key in ("RLM_MAX_TURNS", "RLM_MAX_SUB_CALLS", "RLM_TIMEOUT_MS", "RLM_MODE"):
        monkeypatch.setenv(key, "unset")
        monkeypatch.delenv(key)
    monkeypatch.setenv("RLM_CONFIG_DIR", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


FILES = {"app/main.py": "from app.db import connect\n", "app/db.py": "def connect():\n    pass\n"}

DELEGATE_THEN_FINAL = [
    '```python\nnotes = llm_query("Describe " + files[1])\nprint(notes)\n```',
    '```python\nFINAL("main imports db.connect")\n```',
]


def test_build_query_variants() -> None:
    assert build_query("Where is the DB opened?") == "Where is the DB opened?"
    canned = build_query(None, "security")
    assert canned
    combined = build_query("Focus on auth", "security")
    assert combined.startswith("Focus on auth\n\n")
    assert combined.endswith(canned)
    with pytest.raises(ValueError):
        build_query(None, None)


@pytest.mark.asyncio
async def test_analyze_files_with_explicit_provider() -> None:
    provider = MockProvider(main_outputs=list(DELEGATE_THEN_FINAL))
    turns = []

    result = await rlmscope.analyze_files(
        "How does main reach the database?",
        FILES,
        provider=provider,
        root_model="root-model",
        sub_model="sub-model",
        fallback_model="fallback-model",
        max_turns=4,
        on_turn_complete=turns.append,
    )

    assert result.success
    assert result.answer == "main imports db.connect"
    assert result.sub_call_count == 1
    assert len(turns) == 2
    assert provider.calls_for("sub-model") == ["Describe app/db.py"]
    assert "How does main reach the database?" in provider.conversations[0][0].content


def test_analyze_blocking_wrapper() -> None:
    provider = MockProvider(main_outputs=list(DELEGATE_THEN_FINAL))

    result = rlmscope.analyze(
        None,
        FILES,
        provider=provider,
        analysis_type="architecture",
        root_model="root-model",
        sub_model="sub-model",
    )

    assert result.success
    assert result.turns[0].sub_call_count == 1
