"""Per-run progress state for the live status embed."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from discoclaude.constants import MAX_DESCRIPTION_LENGTH


class RunPhase(str, Enum):
    """Lifecycle of one progress run."""

    IDLE = "idle"  # no progress message yet
    LIVE = "live"  # message exists, accepting debounced edits
    FINISHED = "finished"  # terminal embed written, edits are no-ops


@dataclass
class ProgressState:
    """Mutable record for one logical run, replaced wholesale on reset.

    Attributes:
        prompt: Prompt that started the run (informational)
        message_id: Platform message currently showing progress
        lines: Rendered summary lines in arrival order
        trimmed_count: Lines evicted from the front to fit max_length
        full_text_messages: Raw assistant text blocks kept for the final attachment
        finished: Set once the terminal embed has been claimed
        pending_edit: A debounced edit is scheduled but has not fired yet
        edit_timer: Handle of the scheduled debounced edit
        inflight_edit: Edit started by the timer, awaited before the terminal write
    """

    prompt: str = ""
    message_id: Optional[str] = None
    lines: list[str] = field(default_factory=list)
    trimmed_count: int = 0
    full_text_messages: list[str] = field(default_factory=list)
    finished: bool = False
    pending_edit: bool = False
    edit_timer: Optional[asyncio.TimerHandle] = None
    inflight_edit: Optional[asyncio.Task[None]] = None
    max_length: int = MAX_DESCRIPTION_LENGTH

    @property
    def phase(self) -> RunPhase:
        if self.finished:
            return RunPhase.FINISHED
        if self.message_id:
            return RunPhase.LIVE
        return RunPhase.IDLE

    def render_description(self) -> str:
        """Build the embed description from the accumulated lines."""
        header = ""
        if self.trimmed_count > 0:
            header = f"*[... {self.trimmed_count} earlier entries trimmed]*\n"
        return header + "\n\n".join(self.lines)

    def append_line(self, line: str) -> None:
        self.lines.append(line)
        self.trim_lines()

    def trim_lines(self) -> int:
        """Evict oldest lines until the description fits; never drops the last line.

        Returns:
            Number of lines evicted by this call
        """
        evicted = 0
        while len(self.lines) > 1 and len(self.render_description()) > self.max_length:
            self.lines.pop(0)
            self.trimmed_count += 1
            evicted += 1
        return evicted

    def cancel_timer(self) -> None:
        if self.edit_timer is not None:
            self.edit_timer.cancel()
            self.edit_timer = None
