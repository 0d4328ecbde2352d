"""Text-convention tool calling for backends without native tool support.

The tool catalogue goes into the system instructions and the model is asked
to answer with either a bracketed block::

    [TOOL_CALL]{"name": "list_dir", "arguments": {"path": "."}}[/TOOL_CALL]

or a fenced code block tagged ``tool_call``. Parsing is best effort: a block
that does not decode into ``{name, arguments}`` is skipped.
"""

from __future__ import annotations

import itertools
import json
import logging
import re
import time
from collections.abc import Sequence

from multi_llm_mcp.types import Tool, ToolCall

logger = logging.getLogger(__name__)

_BRACKET_RE = re.compile(r"\[TOOL_CALL\](.*?)\[/TOOL_CALL\]", re.DOTALL)
_FENCE_RE = re.compile(r"```tool_call[ \t]*\r?\n(.*?)```", re.DOTALL)


def render_tool_catalogue(tools: Sequence[Tool]) -> str:
    """Describe ``tools`` and the calling convention as system-prompt text."""
    lines = ["Available tools:"]
    for tool in tools:
        lines.append(f"- {tool.name}: {tool.description}")
        lines.append(f"  parameters: {json.dumps(tool.parameters_schema, sort_keys=True)}")
    lines.extend(
        [
            "",
            "To use a tool, reply with a block of this exact form:",
            '[TOOL_CALL]{"name": "<tool name>", "arguments": {<arguments>}}[/TOOL_CALL]',
            "or a fenced code block tagged tool_call containing the same JSON object.",
            "Emit one block per call.",
        ]
    )
    return "\n".join(lines)


def render_tool_call(call: ToolCall) -> str:
    """Encode a previous call in the bracketed form for replaying history."""
    try:
        arguments = call.arguments()
    except ValueError:
        arguments = {}
    payload = json.dumps({"name": call.name, "arguments": arguments})
    return f"[TOOL_CALL]{payload}[/TOOL_CALL]"


def extract_tool_calls(text: str) -> list[ToolCall]:
    """Return every well-formed tool call found in ``text``, in order of appearance."""
    matches = sorted(
        itertools.chain(_BRACKET_RE.finditer(text), _FENCE_RE.finditer(text)),
        key=lambda m: m.start(),
    )
    stamp = int(time.time() * 1000)
    calls: list[ToolCall] = []
    consumed = 0
    for match in matches:
        # a bracketed block inside a fenced one is the same call
        if match.start() < consumed:
            continue
        body = match.group(1).strip()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping tool call block with invalid JSON (%s): %.200s", exc, body)
            continue
        if not isinstance(payload, dict):
            logger.warning("Skipping tool call block that is not an object: %.200s", body)
            continue
        name = payload.get("name")
        arguments = payload.get("arguments")
        if not isinstance(name, str) or not name or not isinstance(arguments, dict):
            logger.warning("Skipping tool call block without name/arguments: %.200s", body)
            continue
        consumed = match.end()
        calls.append(
            ToolCall(
                id=f"call_{stamp}_{len(calls)}",
                name=name,
                arguments_json=json.dumps(arguments),
            )
        )
    return calls
