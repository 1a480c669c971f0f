"""Convert Claude CLI `stream-json` records into ClaudeMessage batches."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Optional

from discoclaude.core.models import ClaudeMessage, JsonDict, MessageKind, SystemSubtype

logger = logging.getLogger(__name__)

# Record types consumed elsewhere (completion metadata is collected by the client)
_IGNORED_RECORD_TYPES = frozenset({"result"})


def _tool_result_text(content: object) -> str:
    """Flatten tool_result content (string or list of text blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, Mapping) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
            elif isinstance(block, str):
                parts.append(block)
        return "\n".join(parts)
    return ""


def _convert_assistant_block(block: Mapping[str, object]) -> ClaudeMessage:
    block_type = block.get("type")
    if block_type == "text":
        return ClaudeMessage(type=MessageKind.TEXT, content=str(block.get("text", "")))
    if block_type == "tool_use":
        tool_input = block.get("input")
        metadata: JsonDict = {
            "name": str(block.get("name") or "Unknown"),
            "input": tool_input if isinstance(tool_input, dict) else {},  # type: ignore[dict-item]
        }
        if block.get("id"):
            metadata["id"] = str(block["id"])
        return ClaudeMessage(type=MessageKind.TOOL_USE, metadata=metadata)
    if block_type in ("thinking", "redacted_thinking"):
        return ClaudeMessage(type=MessageKind.THINKING, content=str(block.get("thinking", "")))
    return ClaudeMessage(type=MessageKind.OTHER, metadata={"block_type": str(block_type)})


def _content_blocks(record: Mapping[str, object]) -> list[Mapping[str, object]]:
    message = record.get("message")
    if not isinstance(message, Mapping):
        return []
    content = message.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, list):
        return [block for block in content if isinstance(block, Mapping)]
    return []


def convert_to_claude_messages(record: Mapping[str, object]) -> list[ClaudeMessage]:
    """Convert one decoded stream-json record into zero or more messages."""
    record_type = record.get("type")

    if record_type == "assistant":
        return [_convert_assistant_block(block) for block in _content_blocks(record)]

    if record_type == "user":
        results: list[ClaudeMessage] = []
        for block in _content_blocks(record):
            if block.get("type") != "tool_result":
                continue
            results.append(
                ClaudeMessage(
                    type=MessageKind.TOOL_RESULT,
                    content=_tool_result_text(block.get("content")),
                    metadata={
                        "tool_use_id": str(block.get("tool_use_id") or ""),
                        "is_error": bool(block.get("is_error", False)),
                    },
                )
            )
        return results

    if record_type == "system":
        return [
            ClaudeMessage.system(
                SystemSubtype.INFO,
                event=str(record.get("subtype") or ""),
                cwd=_optional_str(record.get("cwd")),
                session_id=_optional_str(record.get("session_id")),
                model=_optional_str(record.get("model")),
            )
        ]

    if record_type in _IGNORED_RECORD_TYPES:
        return []

    logger.debug("Unrecognized stream-json record type: %r", record_type)
    return [ClaudeMessage(type=MessageKind.OTHER, content=json.dumps(dict(record), default=str)[:500])]


def _optional_str(value: object) -> Optional[str]:
    return str(value) if value else None
