"""Explicit per-run session context shared between command handlers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    ABORTED = "aborted"
    COMPLETED = "completed"
    FAILED = "failed"


_FINAL_PHASES = frozenset({SessionPhase.ABORTED, SessionPhase.COMPLETED, SessionPhase.FAILED})


@dataclass
class ClaudeSessionContext:
    """One assistant run: its abort signal and lifecycle phase."""

    prompt: str
    work_dir: str
    resume_session_id: Optional[str] = None
    continue_mode: bool = False
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)
    phase: SessionPhase = SessionPhase.CREATED
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_finished(self) -> bool:
        return self.phase in _FINAL_PHASES

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def activate(self) -> None:
        if self.phase != SessionPhase.CREATED:
            raise RuntimeError(f"Cannot activate session in phase {self.phase.value}")
        self.phase = SessionPhase.ACTIVE

    def abort(self) -> bool:
        """Signal the running subprocess to stop. Returns False if already finished."""
        if self.is_finished:
            return False
        self.abort_event.set()
        self.phase = SessionPhase.ABORTED
        return True

    def complete(self, session_id: Optional[str]) -> None:
        self.session_id = session_id or self.session_id
        if self.phase == SessionPhase.ACTIVE:
            self.phase = SessionPhase.COMPLETED

    def fail(self) -> None:
        if self.phase == SessionPhase.ACTIVE:
            self.phase = SessionPhase.FAILED


class SessionRegistry:
    """Holds the single active run and the last known assistant session id."""

    def __init__(self) -> None:
        self._active: Optional[ClaudeSessionContext] = None
        self.last_session_id: Optional[str] = None

    @property
    def active(self) -> Optional[ClaudeSessionContext]:
        if self._active is not None and self._active.is_finished:
            return None
        return self._active

    def start(self, context: ClaudeSessionContext) -> ClaudeSessionContext:
        """Abort any active run, then make `context` the active one."""
        previous = self.active
        if previous is not None:
            logger.info("Aborting previous Claude session before starting a new one")
            previous.abort()
        context.activate()
        self._active = context
        return context

    def cancel(self) -> bool:
        """Abort the active run. Returns False when nothing was running."""
        current = self.active
        if current is None:
            return False
        current.abort()
        self.last_session_id = None
        return True
