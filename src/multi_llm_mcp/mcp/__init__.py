"""
Stdio tool servers speaking JSON-RPC 2.0 (the MCP stdio transport).

    ┌──────────────┐     stdio      ┌──────────────┐
    │ MCPToolClient │ ──────────── │  Tool Server  │
    │ StdioSession  │  JSON-RPC    │  (subprocess) │
    └──────────────┘     pipes     └──────────────┘
"""

from multi_llm_mcp.mcp.client import MCPToolClient
from multi_llm_mcp.mcp.transport import JsonRpcRequest, SessionState, StdioSession

__all__ = [
    "JsonRpcRequest",
    "MCPToolClient",
    "SessionState",
    "StdioSession",
]
