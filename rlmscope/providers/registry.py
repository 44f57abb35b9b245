from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

ProviderConfig = Dict[str, Any]

PROVIDERS: Dict[str, ProviderConfig] = {
    "openai": {},
    "openrouter": {"base_url": "https://openrouter.ai/api/v1"},
    "groq": {"base_url": "https://api.groq.com/openai/v1"},
    "together": {"base_url": "https://api.together.xyz/v1"},
    "mistral": {"base_url": "https://api.mistral.ai/v1"},
    "gemini": {"base_url": "https://generativelanguage.googleapis.com/v1beta/openai/"},
    "deepseek": {"base_url": "https://api.deepseek.com/v1"},
    "ollama": {"base_url": "http://localhost:11434/v1"},
    "lmstudio": {"base_url": "http://localhost:1234/v1"},
}


def validate_provider_config(name: str, config: ProviderConfig) -> None:
    """Validate provider config. Raises ValueError if invalid."""
    if not name or not isinstance(name, str):
        raise ValueError("Provider name must be a non-empty string")
    base_url = config.get("base_url")
    if base_url:
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid base_url: {base_url}")


def register_provider(name: str, *, base_url: str, **extra: Any) -> None:
    """
    Register a custom OpenAI-compatible endpoint.

    Example:
        register_provider("internal", base_url="https://llm.example.com/v1")
    """
    config = {"base_url": base_url, **extra}
    validate_provider_config(name, config)
    PROVIDERS[name] = config


def get_provider_config(name: str) -> Optional[ProviderConfig]:
    return PROVIDERS.get(name)


def list_providers() -> List[str]:
    return list(PROVIDERS.keys())
