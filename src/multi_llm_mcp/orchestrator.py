"""Async orchestrator over chat providers and stdio tool servers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from multi_llm_mcp.config import ChatProviderConfig, ToolServerConfig
from multi_llm_mcp.errors import NotFoundError, ValidationError
from multi_llm_mcp.factory import create_chat_provider
from multi_llm_mcp.mcp.client import MCPToolClient
from multi_llm_mcp.providers.base import BaseChatProvider
from multi_llm_mcp.types import ChatMessage, ChatResponse, Tool, ToolCall

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ChatProviderConfig], BaseChatProvider]
ToolClientFactory = Callable[[ToolServerConfig], MCPToolClient]


class MCPOrchestrator:
    """Registry of named chat providers and tool servers.

    Registries are plain dicts; changing registrations while ``chat`` or
    ``execute_tool`` calls are in flight is not supported.
    """

    def __init__(
        self,
        *,
        provider_factory: ProviderFactory = create_chat_provider,
        tool_client_factory: ToolClientFactory = MCPToolClient,
    ) -> None:
        self._provider_factory = provider_factory
        self._tool_client_factory = tool_client_factory
        self._providers: dict[str, BaseChatProvider] = {}
        self._servers: dict[str, MCPToolClient] = {}

    async def __aenter__(self) -> MCPOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def add_chat_provider(self, name: str, config: ChatProviderConfig) -> BaseChatProvider:
        """Create a provider from ``config`` and register it, replacing any previous one."""
        provider = self._provider_factory(config)
        self._providers[name] = provider
        logger.info("Added LLM provider: %s (kind=%s model=%s)", name, config.kind, config.model)
        return provider

    async def remove_chat_provider(self, name: str) -> None:
        provider = self._providers.pop(name, None)
        if provider is None:
            raise NotFoundError("provider", name)
        await provider.aclose()
        logger.info("Removed LLM provider: %s", name)

    async def add_tool_server(self, config: ToolServerConfig) -> MCPToolClient:
        """Connect to a tool server; it is registered only once connected.

        A server already registered under the same name is replaced and disconnected.
        """
        client = self._tool_client_factory(config)
        await client.connect()
        previous = self._servers.get(config.name)
        self._servers[config.name] = client
        logger.info("Added MCP server: %s", config.name)
        if previous is not None and previous is not client:
            try:
                await previous.disconnect()
            except Exception:
                logger.exception("Failed to disconnect replaced server: %s", config.name)
        return client

    async def remove_tool_server(self, name: str) -> None:
        client = self._servers.pop(name, None)
        if client is None:
            raise NotFoundError("server", name)
        await client.disconnect()
        logger.info("Removed MCP server: %s", name)

    def get_provider(self, name: str) -> BaseChatProvider:
        """Return a provider by its registered name."""
        try:
            return self._providers[name]
        except KeyError as exc:
            raise NotFoundError("provider", name) from exc

    async def chat(
        self,
        provider_name: str,
        messages: Sequence[ChatMessage],
        include_tools: bool = True,
    ) -> ChatResponse:
        """Run one chat turn, offering the tools of every connected server."""
        provider = self.get_provider(provider_name)
        tools: list[Tool] = []
        if include_tools:
            tools = provider.normalize_tools(await self.get_all_tools())
        return await provider.complete(messages, tools or None)

    async def get_all_tools(self) -> list[Tool]:
        """Union of the tools of all servers; a failing server contributes nothing.

        On duplicate names the later-registered server's tool wins.
        """
        by_name: dict[str, Tool] = {}
        for server_name, client in list(self._servers.items()):
            try:
                tools = await client.list_tools()
            except Exception:
                logger.exception("Failed to list tools from server: %s", server_name)
                continue
            for tool in tools:
                by_name[tool.name] = tool
        return list(by_name.values())

    async def execute_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Call ``name`` on the first server, in registration order, that advertises it."""
        for server_name, client in list(self._servers.items()):
            try:
                tools = await client.list_tools()
            except Exception:
                logger.exception("Failed to list tools from server: %s", server_name)
                continue
            if any(tool.name == name for tool in tools):
                logger.info("Executing tool: %s on server: %s", name, server_name)
                return await client.call_tool(name, arguments)
        raise NotFoundError("tool", name)

    async def execute_tool_call(self, tool_call: ToolCall) -> Any:
        """Route a model-issued ``ToolCall`` through ``execute_tool``."""
        try:
            arguments = tool_call.arguments()
        except ValueError as exc:
            raise ValidationError(
                f"Tool call '{tool_call.id}' has undecodable arguments: {exc}",
                "arguments_json",
            ) from exc
        return await self.execute_tool(tool_call.name, arguments)

    async def disconnect_all(self) -> None:
        """Disconnect every tool server concurrently, then clear the registry."""
        servers = list(self._servers.items())
        results = await asyncio.gather(
            *(client.disconnect() for _, client in servers),
            return_exceptions=True,
        )
        for (server_name, _), result in zip(servers, results):
            if isinstance(result, BaseException):
                logger.error("Failed to disconnect server %s: %s", server_name, result)
        self._servers.clear()
        logger.info("Disconnected all MCP clients")

    async def aclose(self) -> None:
        """Disconnect all servers and close every provider's HTTP client."""
        await self.disconnect_all()
        providers, self._providers = list(self._providers.items()), {}
        results = await asyncio.gather(
            *(provider.aclose() for _, provider in providers),
            return_exceptions=True,
        )
        for (provider_name, _), result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.error("Failed to close provider %s: %s", provider_name, result)

    def list_provider_names(self) -> list[str]:
        return list(self._providers)

    def list_server_names(self) -> list[str]:
        return list(self._servers)
