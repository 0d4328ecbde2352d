"""
multi_llm_mcp - drive several chat backends with tools from stdio JSON-RPC servers.
"""

import logging

from .config import ChatProviderConfig, ToolServerConfig
from .errors import (
    ConnectionClosedError,
    MultiLLMMCPError,
    NotFoundError,
    ProviderError,
    RemoteError,
    RequestTimeoutError,
    TransportConnectionError,
    ValidationError,
)
from .factory import create_chat_provider
from .mcp import MCPToolClient, StdioSession
from .orchestrator import MCPOrchestrator
from .types import ChatMessage, ChatResponse, Tool, ToolCall, Usage

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "ChatMessage",
    "ChatProviderConfig",
    "ChatResponse",
    "ConnectionClosedError",
    "MCPOrchestrator",
    "MCPToolClient",
    "MultiLLMMCPError",
    "NotFoundError",
    "ProviderError",
    "RemoteError",
    "RequestTimeoutError",
    "StdioSession",
    "Tool",
    "ToolCall",
    "ToolServerConfig",
    "TransportConnectionError",
    "Usage",
    "ValidationError",
    "create_chat_provider",
]
