"""Map a provider config to its adapter class."""

from __future__ import annotations

import httpx

from multi_llm_mcp.config import ChatProviderConfig
from multi_llm_mcp.errors import ValidationError
from multi_llm_mcp.providers import (
    AnthropicProvider,
    BaseChatProvider,
    GoogleProvider,
    OpenAIProvider,
)

# map config kind to its adapter implementation
_PROVIDER_REGISTRY: dict[str, type[BaseChatProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleProvider,
}

SUPPORTED_KINDS: tuple[str, ...] = tuple(_PROVIDER_REGISTRY)


def create_chat_provider(
    config: ChatProviderConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> BaseChatProvider:
    """Construct the adapter for ``config.kind``.

    Raises:
        ValidationError: ``kind`` is not one of ``SUPPORTED_KINDS``.
    """
    try:
        provider_cls = _PROVIDER_REGISTRY[config.kind]
    except KeyError:
        raise ValidationError(f"Unsupported LLM provider: {config.kind}", "kind") from None
    return provider_cls(config, http_client=http_client)
