from __future__ import annotations

from typing import Optional

from rlmscope.config import get_settings
from rlmscope.providers.base import BaseProvider
from rlmscope.providers.openai_compat import OpenAICompatProvider
from rlmscope.providers.registry import (
    get_provider_config,
    list_providers,
    register_provider,
)


def create_provider(
    name: str = "openai",
    *,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_seconds: float = 120.0,
) -> OpenAICompatProvider:
    """Build a provider for a registered endpoint, filling gaps from settings."""
    config = get_provider_config(name)
    if config is None:
        raise ValueError(f"Unknown provider: {name}. Use register_provider() to add custom providers.")
    settings = get_settings()
    return OpenAICompatProvider(
        name,
        api_key=api_key or settings.api_key,
        base_url=base_url or settings.base_url or config.get("base_url"),
        timeout_seconds=timeout_seconds,
        default_model=settings.default_model,
    )


__all__ = [
    "BaseProvider",
    "OpenAICompatProvider",
    "create_provider",
    "get_provider_config",
    "list_providers",
    "register_provider",
]
