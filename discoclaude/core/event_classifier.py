"""Compact one-line summaries of assistant events for the progress embed."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Callable, Optional

from discoclaude.constants import (
    INLINE_RESULT_MAX_CHARS,
    TEXT_PREVIEW_MAX_CHARS,
    THINKING_PREVIEW_MAX_CHARS,
    TOOL_PREVIEW_MAX_CHARS,
)
from discoclaude.core.models import ClaudeMessage, MessageKind

_SYSTEM_REMINDER_RE = re.compile(r"<system-reminder>.*?</system-reminder>", re.DOTALL)
_EXCESS_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n")
_FILE_PATH_TOOLS = ("Edit", "Write", "Read")
_SEARCH_TOOLS = ("Glob", "Grep")
_EM_DASH = "—"

OTHER_OUTPUT_LINE = "Other output received"
EMPTY_THINKING_LINE = "Thinking..."


def truncate(text: str, limit: int) -> str:
    """Cut text to `limit` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def should_skip_message(msg: ClaudeMessage, skip_types: frozenset[str]) -> bool:
    """Check whether a message's type or type:subtype tag is in the skip list.

    Completion and failure system messages are never skipped: they drive the
    progress embed into its final state.
    """
    if msg.is_terminal or not skip_types:
        return False

    msg_type = str(msg.type.value if isinstance(msg.type, MessageKind) else msg.type).lower()
    if msg_type in skip_types:
        return True

    subtype = msg.subtype
    if subtype and f"{msg_type}:{subtype.lower()}" in skip_types:
        return True
    return False


def _tool_input(msg: ClaudeMessage) -> Mapping[str, object]:
    raw = msg.metadata.get("input")
    return raw if isinstance(raw, Mapping) else {}


def _format_todo(name: str, tool_input: Mapping[str, object]) -> str:
    todos = tool_input.get("todos")
    count = len(todos) if isinstance(todos, list) else 0
    return f"**Todo** {_EM_DASH} {count} item(s)"


def _format_file_path(name: str, tool_input: Mapping[str, object]) -> str:
    file_path = tool_input.get("file_path") or "unknown"
    return f"**{name}** {_EM_DASH} `{file_path}`"


def _format_bash(name: str, tool_input: Mapping[str, object]) -> str:
    command = str(tool_input.get("command") or "")
    return f"**{name}** {_EM_DASH} `{truncate(command, TOOL_PREVIEW_MAX_CHARS)}`"


def _format_search(name: str, tool_input: Mapping[str, object]) -> str:
    pattern = tool_input.get("pattern") or tool_input.get("glob") or ""
    return f"**{name}** {_EM_DASH} `{pattern}`"


def _format_task(name: str, tool_input: Mapping[str, object]) -> str:
    description = tool_input.get("description") or ""
    return f"**{name}** {_EM_DASH} {description}"


def _format_generic_tool(name: str, tool_input: Mapping[str, object]) -> str:
    encoded = json.dumps(dict(tool_input), separators=(",", ":"), default=str)
    return f"**{name}** {_EM_DASH} `{truncate(encoded, TOOL_PREVIEW_MAX_CHARS)}`"


_TOOL_FORMATTERS: dict[str, Callable[[str, Mapping[str, object]], str]] = {
    "TodoWrite": _format_todo,
    "Bash": _format_bash,
    "Task": _format_task,
    **{name: _format_file_path for name in _FILE_PATH_TOOLS},
    **{name: _format_search for name in _SEARCH_TOOLS},
}


def clean_tool_result(content: str) -> str:
    """Strip system reminders and collapse runs of blank lines."""
    cleaned = _SYSTEM_REMINDER_RE.sub("", content)
    return _EXCESS_BLANK_LINES_RE.sub("\n\n", cleaned).strip()


def summarize_message(msg: ClaudeMessage) -> Optional[str]:
    """Convert one message into a compact summary line.

    Returns None when the message contributes nothing to the progress view
    (empty text, empty tool output, and all system messages).
    """
    kind = msg.type
    if kind == MessageKind.TEXT:
        text = msg.content.strip()
        if not text:
            return None
        return f"\\> {truncate(text, TEXT_PREVIEW_MAX_CHARS)}"

    if kind == MessageKind.TOOL_USE:
        name = str(msg.metadata.get("name") or "Unknown")
        formatter = _TOOL_FORMATTERS.get(name, _format_generic_tool)
        return formatter(name, _tool_input(msg))

    if kind == MessageKind.TOOL_RESULT:
        content = clean_tool_result(msg.content)
        if not content:
            return None
        line_count = len(content.split("\n"))
        if line_count <= 1 and len(content) <= INLINE_RESULT_MAX_CHARS:
            return f"Result {_EM_DASH} {content}"
        return f"Result {_EM_DASH} {line_count} line(s)"

    if kind == MessageKind.THINKING:
        text = msg.content.strip()
        if not text:
            return EMPTY_THINKING_LINE
        return f"*Thinking: {truncate(text, THINKING_PREVIEW_MAX_CHARS)}*"

    if kind == MessageKind.OTHER:
        return OTHER_OUTPUT_LINE

    return None
