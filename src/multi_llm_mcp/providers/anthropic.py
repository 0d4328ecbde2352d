"""Anthropic provider implementation."""

from __future__ import annotations

import json
from typing import Any

from multi_llm_mcp.errors import ProviderError
from multi_llm_mcp.providers.base import BaseChatProvider
from multi_llm_mcp.types import ChatMessage, ChatResponse, Tool, ToolCall, Usage

_MESSAGES_PATH = "/v1/messages"
_API_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 1024


class AnthropicProvider(BaseChatProvider):
    """Async adapter for the Anthropic Messages API (non-streaming)."""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com"
    finish_reasons = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "tool_use": "tool_calls",
        "refusal": "content_filter",
    }

    async def _complete(self, messages: list[ChatMessage], tools: list[Tool]) -> ChatResponse:
        payload = self._build_payload(messages, tools)
        response = await self._client.post(
            _MESSAGES_PATH,
            headers={
                "x-api-key": self.config.credential,
                "anthropic-version": _API_VERSION,
                "content-type": "application/json",
            },
            json=payload,
        )
        data = self._json_or_error(response)

        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ProviderError(self.name, "Unexpected response format from Anthropic")

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in blocks:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block["id"],
                        name=block["name"],
                        arguments_json=json.dumps(block.get("input") or {}),
                    )
                )

        return ChatResponse(
            content="".join(text_parts),
            tool_calls=tool_calls or None,
            finish_reason=self.map_finish_reason(data.get("stop_reason")),
            usage=self._extract_usage(data),
        )

    def _build_payload(self, messages: list[ChatMessage], tools: list[Tool]) -> dict[str, Any]:
        system_text, msgs = self.split_system(messages)

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_tokens or _DEFAULT_MAX_TOKENS,
            "temperature": self.temperature,
            "messages": self._serialize_messages(msgs),
        }
        if system_text:
            payload["system"] = system_text
        if tools:
            payload["tools"] = self._serialize_tools(tools)
        return payload

    @staticmethod
    def _serialize_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
        # Consecutive turns of the same role are merged: the API requires
        # user/assistant alternation and tool results travel as user turns.
        serialized: list[dict[str, Any]] = []
        for message in messages:
            if message.tool_call_id is not None:
                role = "user"
                blocks: list[dict[str, Any]] = [
                    {
                        "type": "tool_result",
                        "tool_use_id": message.tool_call_id,
                        "content": message.content,
                    }
                ]
            else:
                role = message.role
                blocks = [{"type": "text", "text": message.content}] if message.content else []
                for tc in message.tool_calls or ():
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": _decode_arguments(tc),
                        }
                    )
            if not blocks:
                # empty turns are not sent
                continue
            if serialized and serialized[-1]["role"] == role:
                serialized[-1]["content"].extend(blocks)
            else:
                serialized.append({"role": role, "content": blocks})
        return serialized

    @staticmethod
    def _serialize_tools(tools: list[Tool]) -> list[dict[str, Any]]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": {"type": "object", **t.parameters_schema},
            }
            for t in tools
        ]

    @staticmethod
    def _extract_usage(data: dict[str, Any]) -> Usage | None:
        # no total is reported; it is the sum of both counts
        return BaseChatProvider.usage_from_counts(
            data.get("usage"), "input_tokens", "output_tokens"
        )


def _decode_arguments(call: ToolCall) -> dict[str, Any]:
    try:
        return call.arguments()
    except ValueError as exc:
        raise ProviderError("anthropic", f"tool call '{call.id}' has invalid arguments") from exc
