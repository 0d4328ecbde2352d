"""Typed tool operations over one stdio session."""

from __future__ import annotations

import logging
from typing import Any

import pydantic

from multi_llm_mcp.config import ToolServerConfig
from multi_llm_mcp.errors import RemoteError
from multi_llm_mcp.mcp.transport import (
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_STARTUP_TIMEOUT_S,
    SessionState,
    StdioSession,
)
from multi_llm_mcp.types import Tool

logger = logging.getLogger(__name__)


class MCPToolClient:
    """Exposes ``tools/list`` and ``tools/call`` of one tool server."""

    def __init__(
        self,
        config: ToolServerConfig,
        *,
        request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        startup_timeout_s: float = DEFAULT_STARTUP_TIMEOUT_S,
        session: StdioSession | None = None,
    ) -> None:
        self.config = config
        self._session = session or StdioSession(
            config.command,
            config.args,
            config.env,
            name=config.name,
            request_timeout_s=request_timeout_s,
            startup_timeout_s=startup_timeout_s,
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    async def connect(self) -> None:
        await self._session.connect()

    async def disconnect(self) -> None:
        await self._session.disconnect()

    async def list_tools(self) -> list[Tool]:
        """Return the tools currently advertised by the server."""
        result = await self._session.send_request("tools/list", {})
        raw_tools = result.get("tools") if isinstance(result, dict) else None
        if not isinstance(raw_tools, list):
            raise RemoteError(f"{self.name}: malformed tools/list result")
        try:
            return [Tool.model_validate(raw) for raw in raw_tools]
        except pydantic.ValidationError as exc:
            raise RemoteError(f"{self.name}: malformed tool definition: {exc}") from exc

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Invoke a tool; the result payload is returned as sent by the server."""
        logger.debug("Calling tool %s on %s", name, self.name)
        return await self._session.send_request(
            "tools/call", {"name": name, "arguments": arguments}
        )
