"""Provider-agnostic base interface and helpers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar, cast

import httpx

from multi_llm_mcp.config import ChatProviderConfig
from multi_llm_mcp.errors import ProviderError
from multi_llm_mcp.types import ChatMessage, ChatResponse, FinishReason, Tool, Usage

DEFAULT_TEMPERATURE = 0.7


class BaseChatProvider(ABC):
    """Abstract base class for chat backend adapters.

    Subclasses implement ``_complete`` for exactly one backend; ``complete``
    turns whatever it raises into a ``ProviderError`` naming that backend.
    """

    name: ClassVar[str]
    default_base_url: ClassVar[str]
    native_tools: ClassVar[bool] = True
    finish_reasons: ClassVar[Mapping[str, FinishReason]] = {}

    def __init__(
        self,
        config: ChatProviderConfig,
        *,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.model = config.model
        self.logger = logger or logging.getLogger(type(self).__module__)
        self._client = http_client or httpx.AsyncClient(
            base_url=config.base_url or self.default_base_url,
            timeout=timeout_s,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Tool] | None = None,
    ) -> ChatResponse:
        """Run one chat turn against the backend and normalize its reply."""
        self.logger.debug(
            "%s chat completion request: model=%s messages=%d tools=%d",
            self.name,
            self.model,
            len(messages),
            len(tools or ()),
        )
        try:
            return await self._complete(list(messages), list(tools or ()))
        except ProviderError:
            self.logger.exception("%s chat completion failed", self.name)
            raise
        except Exception as exc:
            self.logger.exception("%s chat completion failed", self.name)
            raise ProviderError(self.name, f"request failed: {exc}") from exc

    @abstractmethod
    async def _complete(self, messages: list[ChatMessage], tools: list[Tool]) -> ChatResponse:
        """Issue the backend call and build the normalized response."""
        raise NotImplementedError

    def normalize_tools(self, raw_tools: Sequence[Tool | Mapping[str, Any]]) -> list[Tool]:
        """Coerce ``tools/list`` entries (or ready ``Tool`` objects) into ``Tool`` models."""
        return [t if isinstance(t, Tool) else Tool.model_validate(dict(t)) for t in raw_tools]

    def map_finish_reason(self, code: str | None) -> FinishReason:
        """Map a backend stop code onto the shared enum; unknown codes mean ``stop``."""
        if code is None:
            return "stop"
        return self.finish_reasons.get(code, "stop")

    @property
    def temperature(self) -> float:
        if self.config.temperature is None:
            return DEFAULT_TEMPERATURE
        return self.config.temperature

    @staticmethod
    def split_system(messages: Sequence[ChatMessage]) -> tuple[str, list[ChatMessage]]:
        system_parts: list[str] = []
        rest: list[ChatMessage] = []
        for m in messages:
            if m.role == "system":
                system_parts.append(m.content)
            else:
                rest.append(m)
        return ("\n".join(system_parts), rest)

    @staticmethod
    def usage_from_counts(
        usage: Any,
        prompt_key: str,
        completion_key: str,
        total_key: str | None = None,
    ) -> Usage | None:
        """Build ``Usage`` from a backend counter object.

        A missing or non-integer count yields ``None`` rather than a zero.
        Without ``total_key`` the total is prompt plus completion.
        """
        if not isinstance(usage, Mapping):
            return None
        keys = [prompt_key, completion_key] + ([total_key] if total_key else [])
        counts = [usage.get(key) for key in keys]
        if not all(isinstance(c, int) and not isinstance(c, bool) for c in counts):
            return None
        prompt, completion = counts[0], counts[1]
        total = counts[2] if total_key else prompt + completion
        return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def _json_or_error(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise ProviderError(
                self.name,
                response.text or response.reason_phrase,
                status_code=response.status_code,
            )
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderError(self.name, "response body is not a JSON object")
        return cast(dict[str, Any], data)
