"""Provider-agnostic chat and tool models."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]
FinishReason = Literal["stop", "length", "tool_calls", "content_filter"]


class ToolCall(BaseModel):
    """A model-issued request to invoke a named tool."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments_json: str = "{}"

    def arguments(self) -> dict[str, Any]:
        """Decode ``arguments_json``; raises ``ValueError`` if it is not a JSON object."""
        decoded = json.loads(self.arguments_json or "{}")
        if not isinstance(decoded, dict):
            raise ValueError(f"Tool call '{self.id}' arguments are not a JSON object")
        return decoded


class ChatMessage(BaseModel):
    """Single chat message.

    A message carrying ``tool_call_id`` holds the result of that tool call;
    adapters translate it into their backend's tool-result shape.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None


class Tool(BaseModel):
    """Callable capability advertised by a tool server."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    parameters_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class Usage(BaseModel):
    """Token accounting as reported by a backend."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatResponse(BaseModel):
    """Normalized reply shared by all providers."""

    content: str
    tool_calls: list[ToolCall] | None = None
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None
