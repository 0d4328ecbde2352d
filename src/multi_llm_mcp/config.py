"""Configuration models for chat providers and tool servers."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import pydantic
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from multi_llm_mcp.errors import ValidationError


class ChatProviderConfig(BaseModel):
    """Settings for one hosted chat backend."""

    # the set of supported kinds is enforced by the provider factory
    kind: str
    model: str = Field(min_length=1)
    credential: str = Field(min_length=1)
    base_url: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return value


class ToolServerConfig(BaseModel):
    """How to launch one stdio tool server."""

    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None


def parse_chat_provider_config(data: Mapping[str, Any]) -> ChatProviderConfig:
    """Validate a mapping into a ``ChatProviderConfig``."""
    return _parse(ChatProviderConfig, data)


def parse_tool_server_config(data: Mapping[str, Any]) -> ToolServerConfig:
    """Validate a mapping into a ``ToolServerConfig``."""
    return _parse(ToolServerConfig, data)


def _parse(model: type[BaseModel], data: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or model.__name__
        raise ValidationError(f"Invalid {field}: {first['msg']}", field) from exc


# (registry name, kind, model, env var, max_tokens)
_ENV_DEFAULTS: tuple[tuple[str, str, str, str, int], ...] = (
    ("gpt-4", "openai", "gpt-4o", "OPENAI_API_KEY", 4000),
    ("claude-3-sonnet", "anthropic", "claude-3-5-sonnet-20241022", "ANTHROPIC_API_KEY", 4000),
    ("gemini-pro", "google", "gemini-1.5-pro", "GOOGLE_API_KEY", 8192),
)


def chat_provider_configs_from_env(
    env: Mapping[str, str] | None = None,
) -> dict[str, ChatProviderConfig]:
    """Build default provider configs for every API key present in the environment.

    When ``env`` is omitted a ``.env`` file is loaded first and ``os.environ`` is used.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    configs: dict[str, ChatProviderConfig] = {}
    for name, kind, model, env_var, max_tokens in _ENV_DEFAULTS:
        key = env.get(env_var, "").strip()
        if not key:
            continue
        configs[name] = ChatProviderConfig(
            kind=kind,
            model=model,
            credential=key,
            temperature=0.7,
            max_tokens=max_tokens,
        )
    return configs
