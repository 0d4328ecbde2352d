"""Chat provider adapters for multi_llm_mcp."""

from .anthropic import AnthropicProvider
from .base import BaseChatProvider
from .google import GoogleProvider
from .openai import OpenAIProvider

__all__ = [
    "BaseChatProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GoogleProvider",
]
