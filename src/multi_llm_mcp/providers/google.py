"""Google Gemini provider implementation.

Tools are not declared natively here: the catalogue is appended to the
system instruction and calls are recovered from the reply text.
"""

from __future__ import annotations

from typing import Any

from multi_llm_mcp.errors import ProviderError
from multi_llm_mcp.providers.base import BaseChatProvider
from multi_llm_mcp.providers.tool_text import (
    extract_tool_calls,
    render_tool_call,
    render_tool_catalogue,
)
from multi_llm_mcp.types import ChatMessage, ChatResponse, Tool, Usage


class GoogleProvider(BaseChatProvider):
    """Async adapter for the Gemini ``generateContent`` REST endpoint."""

    name = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    native_tools = False
    finish_reasons = {
        "STOP": "stop",
        "MAX_TOKENS": "length",
        "SAFETY": "content_filter",
        "RECITATION": "content_filter",
        "BLOCKLIST": "content_filter",
        "PROHIBITED_CONTENT": "content_filter",
        "SPII": "content_filter",
    }

    async def _complete(self, messages: list[ChatMessage], tools: list[Tool]) -> ChatResponse:
        payload = self._build_payload(messages, tools)
        response = await self._client.post(
            f"/models/{self.model}:generateContent",
            params={"key": self.config.credential},
            headers={"Content-Type": "application/json"},
            json=payload,
        )
        data = self._json_or_error(response)
        usage = self._extract_usage(data)

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                self.logger.warning("Gemini blocked the prompt: %s", block_reason)
                return ChatResponse(content="", finish_reason="content_filter", usage=usage)
            raise ProviderError(self.name, "No candidates in Gemini response")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        finish_reason = self.map_finish_reason(candidate.get("finishReason"))

        tool_calls = extract_tool_calls(text) if tools else []
        if tool_calls and finish_reason == "stop":
            finish_reason = "tool_calls"

        return ChatResponse(
            content=text,
            tool_calls=tool_calls or None,
            finish_reason=finish_reason,
            usage=usage,
        )

    def _build_payload(self, messages: list[ChatMessage], tools: list[Tool]) -> dict[str, Any]:
        system_text, msgs = self.split_system(messages)
        if tools:
            catalogue = render_tool_catalogue(tools)
            system_text = f"{system_text}\n\n{catalogue}" if system_text else catalogue

        if not msgs:
            raise ProviderError(self.name, "No messages provided")

        payload: dict[str, Any] = {
            "contents": [self._serialize_message(m) for m in msgs],
        }
        if system_text:
            payload["system_instruction"] = {"parts": [{"text": system_text}]}

        generation_config: dict[str, Any] = {"temperature": self.temperature}
        if self.config.max_tokens is not None:
            generation_config["maxOutputTokens"] = self.config.max_tokens
        payload["generationConfig"] = generation_config
        return payload

    @staticmethod
    def _serialize_message(message: ChatMessage) -> dict[str, Any]:
        if message.tool_call_id is not None:
            text = f"Result of tool call {message.tool_call_id}:\n{message.content}"
            return {"role": "user", "parts": [{"text": text}]}

        chunks = [message.content] if message.content else []
        chunks.extend(render_tool_call(tc) for tc in message.tool_calls or ())
        role = "model" if message.role == "assistant" else "user"
        return {"role": role, "parts": [{"text": "\n".join(chunks)}]}

    @staticmethod
    def _extract_usage(data: dict[str, Any]) -> Usage | None:
        return BaseChatProvider.usage_from_counts(
            data.get("usageMetadata"),
            "promptTokenCount",
            "candidatesTokenCount",
            "totalTokenCount",
        )
