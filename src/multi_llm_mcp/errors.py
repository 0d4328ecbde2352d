"""Package specific exception hierarchy."""

from __future__ import annotations

from typing import Any


class MultiLLMMCPError(Exception):
    """Base exception for multi_llm_mcp package."""


class TransportConnectionError(MultiLLMMCPError, ConnectionError):
    """Raised when a tool server cannot be spawned, fails its handshake or is not connected."""

    def __init__(self, message: str, server: str | None = None) -> None:
        prefix = f"{server}: " if server else ""
        super().__init__(f"{prefix}{message}")
        self.server = server


class RequestTimeoutError(MultiLLMMCPError, TimeoutError):
    """Raised when no correlated response arrives within the request window."""

    def __init__(self, method: str, timeout_s: float) -> None:
        super().__init__(f"Request '{method}' timed out after {timeout_s:g}s")
        self.method = method
        self.timeout_s = timeout_s


class ConnectionClosedError(MultiLLMMCPError):
    """Raised for requests still outstanding when a session is torn down."""


class RemoteError(MultiLLMMCPError):
    """Represents an error object returned by a JSON-RPC peer."""

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        suffix = f" (code {code})" if code is not None else ""
        super().__init__(f"{message}{suffix}")
        self.code = code
        self.data = data


class ProviderError(MultiLLMMCPError):
    """Represents any chat backend failure, HTTP or otherwise."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.status_code = status_code


class ValidationError(MultiLLMMCPError):
    """Raised when a configuration value is missing or malformed."""

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(MultiLLMMCPError):
    """Raised when a provider, server or tool name is not registered."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind.capitalize()} '{name}' not found.")
        self.kind = kind
        self.name = name
