"""OpenAI provider implementation."""

from __future__ import annotations

from typing import Any

from multi_llm_mcp.errors import ProviderError
from multi_llm_mcp.providers.base import BaseChatProvider
from multi_llm_mcp.types import ChatMessage, ChatResponse, Tool, ToolCall, Usage

_CHAT_PATH = "/v1/chat/completions"


class OpenAIProvider(BaseChatProvider):
    """Async adapter for the OpenAI Chat Completions API."""

    name = "openai"
    default_base_url = "https://api.openai.com"
    finish_reasons = {
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool_calls",
        "function_call": "tool_calls",
        "content_filter": "content_filter",
    }

    async def _complete(self, messages: list[ChatMessage], tools: list[Tool]) -> ChatResponse:
        payload = self._build_payload(messages, tools)
        response = await self._client.post(
            _CHAT_PATH,
            headers={
                "Authorization": f"Bearer {self.config.credential}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        data = self._json_or_error(response)

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(self.name, "No response from OpenAI")
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = [
            ToolCall(
                id=tc["id"],
                name=tc["function"]["name"],
                arguments_json=tc["function"].get("arguments") or "{}",
            )
            for tc in message.get("tool_calls") or []
        ]

        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls or None,
            finish_reason=self.map_finish_reason(choice.get("finish_reason")),
            usage=self._extract_usage(data),
        )

    def _build_payload(self, messages: list[ChatMessage], tools: list[Tool]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [self._serialize_message(m) for m in messages],
            "temperature": self.temperature,
        }
        if self.config.max_tokens is not None:
            payload["max_tokens"] = self.config.max_tokens
        if tools:
            payload["tools"] = self._serialize_tools(tools)
            payload["tool_choice"] = "auto"
        return payload

    @staticmethod
    def _serialize_message(message: ChatMessage) -> dict[str, Any]:
        if message.tool_call_id is not None:
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            }
        serialized: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_calls:
            serialized["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments_json},
                }
                for tc in message.tool_calls
            ]
            # OpenAI expects null content alongside tool calls
            serialized["content"] = message.content or None
        return serialized

    @staticmethod
    def _serialize_tools(tools: list[Tool]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters_schema,
                },
            }
            for t in tools
        ]

    @staticmethod
    def _extract_usage(data: dict[str, Any]) -> Usage | None:
        return BaseChatProvider.usage_from_counts(
            data.get("usage"), "prompt_tokens", "completion_tokens", "total_tokens"
        )
