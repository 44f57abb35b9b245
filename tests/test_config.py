from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator

import pytest

from rlmscope.config import (
    Settings,
    get_settings,
    read_config_file,
    reset_settings,
    resolve_model_alias,
    resolve_session_config,
)
from rlmscope.exceptions import RLMConfigError

_ENV_KEYS = (
    "RLM_DEFAULT_MODEL",
    "RLM_FALLBACK_MODEL",
    "RLM_SUB_MODEL",
    "RLM_API_KEY",
    "OPENAI_API_KEY",
    "RLM_BASE_URL",
    "RLM_MAX_TURNS",
    "RLM_TIMEOUT_MS",
    "RLM_MAX_SUB_CALLS",
    "RLM_MAX_RECURSION_DEPTH",
    "RLM_MODE",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    # setenv first so teardown also removes values loaded from .env files.
    for key in _ENV_KEYS:
        monkeypatch.setenv(key, "unset")
        monkeypatch.delenv(key)
    config_home = tmp_path / "home"
    config_home.mkdir()
    monkeypatch.setenv("RLM_CONFIG_DIR", str(config_home))
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield config_home
    reset_settings()


def _write_config(config_home: Path, data: object) -> None:
    (config_home / "config.json").write_text(json.dumps(data), encoding="utf-8")


def test_builtin_defaults() -> None:
    settings = Settings()
    assert settings.default_model == "gpt-4o-mini"
    assert settings.fallback_model == "gpt-4o-mini"
    assert settings.sub_model is None
    assert (settings.max_turns, settings.timeout_ms, settings.max_sub_calls) == (10, 300_000, 15)
    assert settings.mode == "code-analysis"
    assert not settings.has_api_key


def test_aliases_resolve() -> None:
    assert resolve_model_alias("smart") == "gpt-4o"
    assert resolve_model_alias(" FAST ") == "gpt-4o-mini"
    assert resolve_model_alias("anthropic/claude-sonnet") == "anthropic/claude-sonnet"


def test_env_beats_config_file(monkeypatch: pytest.MonkeyPatch, isolated_env: Path) -> None:
    _write_config(isolated_env, {"models": {"default": "smart", "fallback": "fast"}, "apiKey": "file-key"})
    settings = Settings()
    assert settings.default_model == "gpt-4o"
    assert settings.fallback_model == "gpt-4o-mini"
    assert settings.api_key == "file-key"

    monkeypatch.setenv("RLM_DEFAULT_MODEL", "openai/gpt-4.1")
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    settings = Settings()
    assert settings.default_model == "openai/gpt-4.1"
    assert settings.api_key == "env-key"


def test_legacy_config_keys(isolated_env: Path) -> None:
    _write_config(isolated_env, {"model": "custom-root", "fallbackModel": "custom-fallback"})
    settings = Settings()
    assert settings.default_model == "custom-root"
    assert settings.fallback_model == "custom-fallback"


def test_dotenv_file_is_loaded(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("RLM_MAX_SUB_CALLS=7\nRLM_SUB_MODEL=fast\n", encoding="utf-8")
    settings = Settings()
    assert settings.max_sub_calls == 7
    assert settings.sub_model == "fast"


def test_invalid_config_file(isolated_env: Path) -> None:
    (isolated_env / "config.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(RLMConfigError) as excinfo:
        read_config_file()
    assert excinfo.value.code == "invalid_config_file"

    _write_config(isolated_env, ["not", "an", "object"])
    with pytest.raises(RLMConfigError):
        read_config_file()


def test_invalid_integer_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RLM_MAX_TURNS", "ten")
    with pytest.raises(RLMConfigError) as excinfo:
        Settings()
    assert excinfo.value.details == {"name": "RLM_MAX_TURNS", "value": "ten"}


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
    first = get_settings()
    reset_settings()
    assert get_settings() is not first


def test_resolve_session_config_defaults_sub_model_to_root() -> None:
    config = resolve_session_config(root_model="smart")
    assert config.root_model == "gpt-4o"
    assert config.sub_model == "gpt-4o"
    assert config.fallback_model == "gpt-4o-mini"
    assert config.max_turns == 10


def test_resolve_session_config_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RLM_MAX_TURNS", "4")
    reset_settings()
    config = resolve_session_config(sub_model="fast", max_sub_calls=3, timeout_ms=None)
    assert config.max_turns == 4
    assert config.max_sub_calls == 3
    assert config.timeout_ms == 300_000
    assert config.sub_model == "gpt-4o-mini"


def test_resolve_session_config_rejects_invalid_values() -> None:
    with pytest.raises(RLMConfigError) as excinfo:
        resolve_session_config(max_turns=0)
    assert excinfo.value.code == "invalid_session_config"

    with pytest.raises(RLMConfigError):
        resolve_session_config(unknown_option=True)
