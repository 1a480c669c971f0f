"""Command handlers that run Claude Code and stream its progress."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from discoclaude.constants import DEFAULT_CONTINUE_PROMPT, PROMPT_PREVIEW_MAX_CHARS
from discoclaude.core.claude_client import ClaudeClient, ClaudeRunResult
from discoclaude.core.claude_sender import ClaudeSender
from discoclaude.core.event_classifier import truncate
from discoclaude.core.message_converter import convert_to_claude_messages
from discoclaude.core.models import ClaudeMessage, SystemSubtype
from discoclaude.core.session_context import ClaudeSessionContext, SessionRegistry

logger = logging.getLogger(__name__)

PLAN_PERMISSION_MODE = "plan"


class ReplyContext(Protocol):
    """Interaction surface the handlers need from the chat platform."""

    async def defer(self) -> None: ...

    async def edit_reply(self, text: str) -> Optional[str]: ...


class ClaudeHandlers:
    """Start, continue and cancel Claude Code runs."""

    def __init__(
        self,
        *,
        work_dir: str,
        client: ClaudeClient,
        sender: ClaudeSender,
        sessions: Optional[SessionRegistry] = None,
    ) -> None:
        self.work_dir = work_dir
        self._client = client
        self._sender = sender
        self.sessions = sessions or SessionRegistry()

    async def on_claude(
        self,
        ctx: ReplyContext,
        prompt: str,
        session_id: Optional[str] = None,
        *,
        plan: bool = False,
    ) -> ClaudeRunResult:
        context = ClaudeSessionContext(prompt=prompt, work_dir=self.work_dir, resume_session_id=session_id)
        return await self._run(ctx, context, label="Plan" if plan else "Command", plan=plan)

    async def on_continue(self, ctx: ReplyContext, prompt: Optional[str] = None, *, plan: bool = False) -> ClaudeRunResult:
        context = ClaudeSessionContext(
            prompt=prompt or DEFAULT_CONTINUE_PROMPT,
            work_dir=self.work_dir,
            continue_mode=True,
        )
        return await self._run(ctx, context, label="Plan" if plan else "Command", plan=plan)

    def on_cancel(self) -> bool:
        cancelled = self.sessions.cancel()
        if cancelled:
            logger.info("Cancelling Claude Code session...")
        return cancelled

    async def _init_progress(self, ctx: ReplyContext, prompt: str, label: str) -> int:
        """Defer the interaction and reuse its reply as the progress message.

        Returns:
            Progress run id that every batch of this run is tagged with
        """
        try:
            await ctx.defer()
        except Exception as exc:
            logger.warning("Failed to defer reply, interaction may have expired: %s", exc)
            return self._sender.reset_progress(prompt)

        message_id: Optional[str] = None
        try:
            message_id = await ctx.edit_reply(f"{label}: {truncate(prompt, PROMPT_PREVIEW_MAX_CHARS)}")
        except Exception as exc:
            logger.debug("Failed to write prompt preview: %s", exc)
        return self._sender.reset_progress(prompt, message_id)

    async def _run(self, ctx: ReplyContext, context: ClaudeSessionContext, *, label: str, plan: bool) -> ClaudeRunResult:
        self.sessions.start(context)
        run_id = await self._init_progress(ctx, context.prompt, label)

        def on_record(record: dict[str, object]) -> None:
            messages = convert_to_claude_messages(record)
            if messages:
                self._sender.send_claude_messages(messages, run_id)

        try:
            result = await self._client.run(
                context,
                on_record,
                permission_mode=PLAN_PERMISSION_MODE if plan else None,
            )
        except Exception as exc:
            context.fail()
            await self._sender.send_claude_messages(
                [ClaudeMessage.system(SystemSubtype.FAILURE, str(exc), cwd=self.work_dir)], run_id
            )
            raise

        context.complete(result.session_id)
        self.sessions.last_session_id = result.session_id
        await self._sender.send_claude_messages(
            [
                ClaudeMessage.system(
                    SystemSubtype.COMPLETION,
                    session_id=result.session_id,
                    model=result.model_used or "Default",
                    total_cost_usd=result.total_cost_usd,
                    duration_ms=result.duration_ms,
                    cwd=self.work_dir,
                )
            ],
            run_id,
        )
        return result
