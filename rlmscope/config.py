"""
Session configuration from environment variables and the user config file.

Usage:
    from rlmscope.config import get_settings, resolve_session_config

    settings = get_settings()
    config = resolve_session_config(max_turns=6)

Model resolution order (highest first): explicit argument, RLM_DEFAULT_MODEL /
RLM_FALLBACK_MODEL, ~/.rlmscope/config.json, built-in default. Aliases such
as "fast" or "smart" resolve to concrete model ids at every level.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from rlmscope.exceptions import RLMConfigError
from rlmscope.models import SessionConfig


BUILTIN_DEFAULT_MODEL = "gpt-4o-mini"
BUILTIN_FALLBACK_MODEL = "gpt-4o-mini"

MODEL_ALIASES: Dict[str, str] = {
    "default": "gpt-4o-mini",
    "fast": "gpt-4o-mini",
    "smart": "gpt-4o",
    "mini": "gpt-4o-mini",
}


def config_dir() -> Path:
    override = os.getenv("RLM_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".rlmscope"


def env_files() -> List[Path]:
    cwd = Path.cwd()
    return [cwd / ".env", cwd / ".env.local", config_dir() / ".env"]


def resolve_model_alias(model: str) -> str:
    return MODEL_ALIASES.get(model.strip().lower(), model.strip())


def read_config_file(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the parsed user config file, or {} when it does not exist."""
    path = path or config_dir() / "config.json"
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise RLMConfigError(
            f"Unreadable config file: {path}",
            code="invalid_config_file",
            details={"path": str(path), "reason": str(exc)},
        ) from exc
    if not isinstance(data, dict):
        raise RLMConfigError(
            f"Config file must hold a JSON object: {path}",
            code="invalid_config_file",
            details={"path": str(path)},
        )
    return data


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RLMConfigError(
            f"{name} must be an integer",
            code="invalid_env",
            details={"name": name, "value": raw},
        ) from exc


class Settings:
    """Configuration loaded from .env files, environment, and config.json."""

    def __init__(self) -> None:
        # Existing environment wins over .env files.
        for path in env_files():
            if path.is_file():
                load_dotenv(path, override=False)

        file_config = read_config_file()
        file_models = file_config.get("models") if isinstance(file_config.get("models"), dict) else {}

        # Models
        self.default_model: str = resolve_model_alias(
            os.getenv("RLM_DEFAULT_MODEL")
            or file_models.get("default")
            or file_config.get("model")
            or BUILTIN_DEFAULT_MODEL
        )
        self.fallback_model: str = resolve_model_alias(
            os.getenv("RLM_FALLBACK_MODEL")
            or file_models.get("fallback")
            or file_config.get("fallbackModel")
            or BUILTIN_FALLBACK_MODEL
        )
        self.sub_model: Optional[str] = os.getenv("RLM_SUB_MODEL")

        # Provider
        self.api_key: Optional[str] = (
            os.getenv("RLM_API_KEY") or os.getenv("OPENAI_API_KEY") or file_config.get("apiKey")
        )
        self.base_url: Optional[str] = os.getenv("RLM_BASE_URL")

        # Session budgets
        self.max_turns: int = _env_int("RLM_MAX_TURNS", 10)
        self.timeout_ms: int = _env_int("RLM_TIMEOUT_MS", 300_000)
        self.max_sub_calls: int = _env_int("RLM_MAX_SUB_CALLS", 15)
        self.max_recursion_depth: int = _env_int("RLM_MAX_RECURSION_DEPTH", 3)
        self.mode: str = os.getenv("RLM_MODE", "code-analysis")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()


def resolve_session_config(
    *,
    root_model: Optional[str] = None,
    sub_model: Optional[str] = None,
    fallback_model: Optional[str] = None,
    settings: Optional[Settings] = None,
    **overrides: Any,
) -> SessionConfig:
    """
    Build the immutable SessionConfig for one orchestrator.

    Unset budgets come from settings; the sub model defaults to the root model.
    """
    settings = settings or get_settings()
    root = resolve_model_alias(root_model) if root_model else settings.default_model
    sub = resolve_model_alias(sub_model) if sub_model else (settings.sub_model or root)
    fallback = resolve_model_alias(fallback_model) if fallback_model else settings.fallback_model

    values: Dict[str, Any] = {
        "max_turns": settings.max_turns,
        "timeout_ms": settings.timeout_ms,
        "max_sub_calls": settings.max_sub_calls,
        "max_recursion_depth": settings.max_recursion_depth,
        "mode": settings.mode,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return SessionConfig(root_model=root, sub_model=sub, fallback_model=fallback, **values)
    except ValidationError as exc:
        raise RLMConfigError(
            "Invalid session configuration",
            code="invalid_session_config",
            details={"errors": exc.errors(include_url=False)},
        ) from exc
