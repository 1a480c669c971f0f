"""Data models for assistant events and outbound Discord messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

# JSON-ish values carried in message metadata
JsonPrimitive = Union[str, int, float, bool, None]
JsonValue = Union[JsonPrimitive, list["JsonValue"], dict[str, "JsonValue"]]
JsonDict = dict[str, JsonValue]


class MessageKind(str, Enum):
    """Kind of a decoded assistant event."""

    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    OTHER = "other"
    SYSTEM = "system"


class SystemSubtype(str, Enum):
    """Subtype of a `system` message."""

    COMPLETION = "completion"
    FAILURE = "failure"
    SHUTDOWN = "shutdown"
    INFO = "info"


TERMINAL_SUBTYPES = frozenset({SystemSubtype.COMPLETION.value, SystemSubtype.FAILURE.value})


@dataclass
class ClaudeMessage:
    """One semantic assistant event.

    Attributes:
        type: Event kind (text, tool_use, tool_result, thinking, other, system)
        content: Text payload (assistant text, tool output, thinking, error text)
        metadata: Kind-specific fields: tool `name`/`input`, system `subtype`,
            `cwd`, `session_id`, `model`, `total_cost_usd`, `duration_ms`,
            `signal`, `repo_name`, `branch_name`, `category_name`
    """

    type: MessageKind
    content: str = ""
    metadata: JsonDict = field(default_factory=dict)

    @property
    def subtype(self) -> Optional[str]:
        value = self.metadata.get("subtype")
        return str(value) if value else None

    @property
    def is_terminal(self) -> bool:
        """True for system completion/failure messages that finalize a run."""
        return self.type == MessageKind.SYSTEM and self.subtype in TERMINAL_SUBTYPES

    @classmethod
    def system(cls, subtype: SystemSubtype, content: str = "", **metadata: JsonValue) -> "ClaudeMessage":
        payload: JsonDict = {"subtype": subtype.value}
        payload.update({k: v for k, v in metadata.items() if v is not None})
        return cls(type=MessageKind.SYSTEM, content=content, metadata=payload)


@dataclass
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass
class EmbedData:
    """Platform-neutral rich embed."""

    color: int
    title: str
    description: Optional[str] = None
    fields: list[EmbedField] = field(default_factory=list)
    timestamp: bool = True


class ButtonStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"


@dataclass
class ButtonData:
    custom_id: str
    label: str
    style: ButtonStyle = ButtonStyle.SECONDARY


@dataclass
class ActionRow:
    buttons: list[ButtonData] = field(default_factory=list)


@dataclass
class FileAttachment:
    data: bytes
    name: str
    description: str = ""


@dataclass
class MessageContent:
    """Everything needed to send or edit one platform message."""

    content: Optional[str] = None
    embeds: list[EmbedData] = field(default_factory=list)
    components: list[ActionRow] = field(default_factory=list)
    files: list[FileAttachment] = field(default_factory=list)
