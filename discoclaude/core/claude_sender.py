"""Stream assistant events into a single, periodically edited progress embed.

One ClaudeSender owns one progress run at a time:

- Non-system events are summarized into lines; the first line creates the
  progress message, later lines schedule a debounced edit.
- Completion/failure system events cancel the debounce, wait for any edit
  already in flight and then write the final embed in place (falling back to a
  new message when the edit fails).
- Other system events (shutdown, info) are posted as standalone messages.

All batches go through a MessageSerializer so they are applied one at a time
in submission order. Each reset_progress starts a new run id; a batch tagged
with an older run id is applied to that run's own state, so a run that is
still winding down never writes into the message of the run that replaced it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Protocol

from discoclaude.constants import (
    COLOR_FAILURE,
    COLOR_NEUTRAL,
    COLOR_RUNNING,
    COLOR_SUCCESS,
    COMPLETION_TITLE,
    EDIT_DEBOUNCE_MS,
    ERROR_PREVIEW_MAX_CHARS,
    FAILURE_TITLE,
    FULL_TEXT_ATTACHMENT_THRESHOLD,
    FULL_TEXT_FILENAME,
    FULL_TEXT_SEPARATOR,
    MAX_DESCRIPTION_LENGTH,
    PROGRESS_TITLE,
)
from discoclaude.core.event_classifier import should_skip_message, summarize_message, truncate
from discoclaude.core.message_queue import MessageSerializer
from discoclaude.core.models import (
    ActionRow,
    ButtonData,
    ButtonStyle,
    ClaudeMessage,
    EmbedData,
    EmbedField,
    FileAttachment,
    MessageContent,
    MessageKind,
    SystemSubtype,
)
from discoclaude.core.progress import ProgressState, RunPhase

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    """Minimal platform surface used by the progress stream."""

    async def send_message(self, content: MessageContent) -> Optional[str]: ...

    async def edit_message(self, message_id: str, content: MessageContent) -> None: ...


def create_action_buttons(session_id: Optional[str]) -> list[ButtonData]:
    """Buttons shown under a completed run."""
    buttons: list[ButtonData] = []
    if session_id:
        buttons.extend(
            [
                ButtonData(custom_id=f"continue:{session_id}", label="Continue", style=ButtonStyle.PRIMARY),
                ButtonData(custom_id=f"copy-session:{session_id}", label="Session ID"),
                ButtonData(custom_id="jump-previous", label="Jump to Previous"),
            ]
        )
    buttons.append(ButtonData(custom_id="cancel-claude", label="Cancel", style=ButtonStyle.DANGER))
    return buttons


def create_workflow_buttons() -> list[ButtonData]:
    return [ButtonData(custom_id="workflow:git-status", label="Git Status")]


def _metadata_fields(msg: ClaudeMessage) -> list[EmbedField]:
    meta = msg.metadata
    fields: list[EmbedField] = []
    if meta.get("cwd"):
        fields.append(EmbedField(name="Working Directory", value=f"`{meta['cwd']}`"))
    if meta.get("session_id"):
        fields.append(EmbedField(name="Session ID", value=f"`{meta['session_id']}`"))
    if meta.get("model"):
        fields.append(EmbedField(name="Model", value=str(meta["model"]), inline=True))
    cost = meta.get("total_cost_usd")
    if isinstance(cost, (int, float)) and not isinstance(cost, bool):
        fields.append(EmbedField(name="Cost", value=f"${cost:.4f}", inline=True))
    duration_ms = meta.get("duration_ms")
    if isinstance(duration_ms, (int, float)) and not isinstance(duration_ms, bool):
        fields.append(EmbedField(name="Duration", value=f"{duration_ms / 1000:.2f}s", inline=True))
    return fields


class ClaudeSender:
    """Aggregates assistant event batches into one live progress message."""

    def __init__(
        self,
        sender: MessageSender,
        *,
        skip_types: frozenset[str] = frozenset(),
        debounce_ms: int = EDIT_DEBOUNCE_MS,
        max_description_length: int = MAX_DESCRIPTION_LENGTH,
    ) -> None:
        self._sender = sender
        self._skip_types = skip_types
        self._debounce_s = debounce_ms / 1000.0
        self._max_description_length = max_description_length
        self._state = ProgressState(max_length=max_description_length)
        self._run_id = 0
        # Unfinished states of replaced runs, keyed by run id
        self._superseded: dict[int, ProgressState] = {}
        self._serializer: MessageSerializer[tuple[Optional[int], list[ClaudeMessage]]] = MessageSerializer(
            self._process_batch, name="claude-sender"
        )

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def run_id(self) -> int:
        return self._run_id

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def send_claude_messages(
        self, messages: Iterable[ClaudeMessage], run_id: Optional[int] = None
    ) -> asyncio.Future[None]:
        """Queue a batch; the returned future resolves once it has been fully applied.

        Args:
            messages: Events to apply, in order
            run_id: Run the batch belongs to (as returned by reset_progress);
                None applies it to whichever run is current when it is processed
        """
        return self._serializer.submit((run_id, list(messages)))

    def reset_progress(self, prompt: Optional[str] = None, message_id: Optional[str] = None) -> int:
        """Start a new run and return its id.

        If message_id is given, progress is rendered into that existing message
        instead of creating a new one. Any pending render is cancelled. A
        previous run whose progress message is still live keeps its state only
        so that its own terminal message can still finalize that message.
        """
        previous = self._state
        previous.cancel_timer()
        previous.pending_edit = False
        if previous.phase is RunPhase.LIVE:
            self._superseded[self._run_id] = previous

        self._run_id += 1
        self._state = ProgressState(
            prompt=prompt or "",
            message_id=message_id or None,
            max_length=self._max_description_length,
        )
        logger.debug("Progress reset to run %d (reuse_message=%s)", self._run_id, bool(message_id))
        return self._run_id

    async def close(self) -> None:
        self._state.cancel_timer()
        for state in self._superseded.values():
            state.cancel_timer()
        self._superseded.clear()
        logger.debug(
            "Closing progress stream (batches applied=%d failed=%d)",
            self._serializer.processed,
            self._serializer.failed,
        )
        await self._serializer.stop()

    # ------------------------------------------------------------------
    # Batch processing (always runs inside the serializer)
    # ------------------------------------------------------------------

    def _state_for(self, run_id: Optional[int]) -> Optional[ProgressState]:
        if run_id is None or run_id == self._run_id:
            return self._state
        return self._superseded.get(run_id)

    async def _process_batch(self, batch: tuple[Optional[int], list[ClaudeMessage]]) -> None:
        run_id, messages = batch
        state = self._state_for(run_id)
        if state is None:
            logger.debug("Dropping %d message(s) for retired run %s", len(messages), run_id)
            return

        await self._process_messages(state, messages)

        if run_id in self._superseded and state.phase is RunPhase.FINISHED:
            del self._superseded[run_id]

    async def _process_messages(self, state: ProgressState, messages: list[ClaudeMessage]) -> None:
        for msg in messages:
            if msg.type == MessageKind.TEXT and msg.content.strip():
                state.full_text_messages.append(msg.content.strip())

            if should_skip_message(msg, self._skip_types):
                continue

            if msg.type == MessageKind.SYSTEM:
                if msg.is_terminal:
                    await self._finalize(state, msg)
                else:
                    await self._send_standalone(state, msg)
                continue

            if state.phase is RunPhase.FINISHED:
                logger.debug("Ignoring %s message after run finished", msg.type)
                continue

            summary_line = summarize_message(msg)
            if not summary_line:
                continue

            state.append_line(summary_line)

            if state.phase is RunPhase.IDLE:
                await self._create_progress_message(state)
            else:
                self._schedule_edit(state)

    async def _create_progress_message(self, state: ProgressState) -> None:
        try:
            message_id = await self._sender.send_message(self._progress_content(state))
        except Exception as exc:
            logger.warning("Failed to create progress message: %s", exc)
            return
        state.message_id = message_id or None

    # ------------------------------------------------------------------
    # Debounced edits
    # ------------------------------------------------------------------

    def _schedule_edit(self, state: ProgressState) -> None:
        state.pending_edit = True
        state.cancel_timer()
        loop = asyncio.get_running_loop()
        state.edit_timer = loop.call_later(self._debounce_s, self._on_edit_timer, state)

    def _on_edit_timer(self, state: ProgressState) -> None:
        state.edit_timer = None
        state.pending_edit = False
        state.inflight_edit = asyncio.ensure_future(self._flush_edit(state))

    async def _flush_edit(self, state: ProgressState) -> None:
        if state.phase is not RunPhase.LIVE or state.message_id is None:
            return
        try:
            await self._sender.edit_message(state.message_id, self._progress_content(state))
        except Exception as exc:
            logger.warning("Failed to edit progress message: %s", exc)

    @staticmethod
    async def _await_inflight(state: ProgressState) -> None:
        inflight = state.inflight_edit
        if inflight is None or inflight.done():
            return
        try:
            await inflight
        except Exception as exc:
            logger.debug("In-flight progress edit ended with error: %s", exc)

    def _progress_content(self, state: ProgressState) -> MessageContent:
        return MessageContent(
            embeds=[EmbedData(color=COLOR_RUNNING, title=PROGRESS_TITLE, description=state.render_description())]
        )

    # ------------------------------------------------------------------
    # System messages
    # ------------------------------------------------------------------

    async def _send_standalone(self, state: ProgressState, msg: ClaudeMessage) -> None:
        """Post shutdown/info messages as new messages, after any pending progress edit."""
        if state.pending_edit:
            state.cancel_timer()
            state.pending_edit = False
            await self._flush_edit(state)

        content = MessageContent(embeds=[self._build_system_embed(msg)])
        try:
            await self._sender.send_message(content)
        except Exception as exc:
            logger.warning("Failed to send %s system message: %s", msg.subtype or "info", exc)

    async def _finalize(self, state: ProgressState, msg: ClaudeMessage) -> None:
        # The terminal embed carries every progress line, so a pending edit is dropped, not flushed.
        state.cancel_timer()
        state.pending_edit = False
        state.finished = True
        await self._await_inflight(state)

        content = self._build_terminal_content(state, msg)

        if state.message_id:
            try:
                await self._sender.edit_message(state.message_id, content)
                return
            except Exception as exc:
                logger.warning("Failed to edit final message %s, sending new: %s", state.message_id, exc)

        try:
            await self._sender.send_message(content)
        except Exception as exc:
            logger.error("Failed to deliver final %s message: %s", msg.subtype, exc)

    def _build_system_embed(self, msg: ClaudeMessage) -> EmbedData:
        subtype = msg.subtype or SystemSubtype.INFO.value

        if subtype == SystemSubtype.SHUTDOWN.value:
            meta = msg.metadata
            return EmbedData(
                color=COLOR_FAILURE,
                title="Shutdown",
                description=f"Bot stopped by signal {meta.get('signal')}",
                fields=[
                    EmbedField(name="Category", value=str(meta.get("category_name") or "-"), inline=True),
                    EmbedField(name="Repository", value=str(meta.get("repo_name") or "-"), inline=True),
                    EmbedField(name="Branch", value=str(meta.get("branch_name") or "-"), inline=True),
                ],
            )

        return EmbedData(color=COLOR_NEUTRAL, title=f"System: {subtype}", fields=_metadata_fields(msg))

    def _build_terminal_content(self, state: ProgressState, msg: ClaudeMessage) -> MessageContent:
        is_completion = msg.subtype == SystemSubtype.COMPLETION.value

        embed = EmbedData(
            color=COLOR_SUCCESS if is_completion else COLOR_FAILURE,
            title=COMPLETION_TITLE if is_completion else FAILURE_TITLE,
            fields=_metadata_fields(msg),
        )
        if state.lines:
            embed.description = state.render_description()
        if not is_completion and msg.content:
            embed.fields.append(EmbedField(name="Error", value=truncate(msg.content, ERROR_PREVIEW_MAX_CHARS)))

        content = MessageContent(embeds=[embed])

        session_id = msg.metadata.get("session_id")
        if is_completion and session_id:
            content.components = [
                ActionRow(buttons=create_action_buttons(str(session_id))),
                ActionRow(buttons=create_workflow_buttons()),
            ]

        total_text_length = sum(len(text) for text in state.full_text_messages)
        if total_text_length > FULL_TEXT_ATTACHMENT_THRESHOLD:
            full_text = FULL_TEXT_SEPARATOR.join(state.full_text_messages)
            content.files = [
                FileAttachment(
                    data=full_text.encode("utf-8"),
                    name=FULL_TEXT_FILENAME,
                    description="Full Claude response",
                )
            ]
        return content
