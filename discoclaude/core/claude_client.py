"""Run the Claude Code CLI as a subprocess and stream its stream-json output."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from discoclaude.constants import ABORT_EXIT_CODE, RATE_LIMIT_EXIT_CODE, STDERR_TAIL_LINES
from discoclaude.core.session_context import ClaudeSessionContext

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 16 * 1024 * 1024  # stream-json lines can carry whole file contents
_CODE_FENCE_RE = re.compile(r"^```\n?|\n?```$")
_BACKTICKS_RE = re.compile(r"^`+|`+$")

RecordCallback = Callable[[dict[str, object]], None]


class ClaudeProcessError(Exception):
    """The Claude CLI exited with a non-zero status (and was not aborted)."""

    def __init__(self, returncode: int, stderr_tail: str) -> None:
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        detail = f": {stderr_tail}" if stderr_tail else ""
        super().__init__(f"Claude Code exited with code {returncode}{detail}")


@dataclass
class ClaudeRunResult:
    session_id: Optional[str] = None
    model_used: str = "Default"
    response: str = ""
    total_cost_usd: Optional[float] = None
    duration_ms: Optional[float] = None
    aborted: bool = False
    records: int = 0
    extra: dict[str, object] = field(default_factory=dict)


def clean_session_id(session_id: str) -> str:
    """Strip whitespace, backticks, code fences and line breaks from a pasted session id."""
    cleaned = session_id.strip()
    cleaned = _BACKTICKS_RE.sub("", cleaned)
    cleaned = _CODE_FENCE_RE.sub("", cleaned)
    cleaned = cleaned.replace("\r", "").replace("\n", "")
    return cleaned.strip()


class ClaudeClient:
    """Thin async wrapper around `claude -p ... --output-format stream-json`."""

    def __init__(
        self,
        command: str = "claude",
        *,
        fallback_model: Optional[str] = None,
        permission_mode: str = "",
    ) -> None:
        self._command = command
        self._fallback_model = fallback_model
        self._permission_mode = permission_mode

    def build_argv(self, context: ClaudeSessionContext, model: Optional[str], permission_mode: str) -> list[str]:
        argv = [self._command, "-p", context.prompt, "--output-format", "stream-json", "--verbose"]
        if permission_mode:
            argv.extend(["--permission-mode", permission_mode])
        if context.continue_mode:
            argv.append("--continue")
        elif context.resume_session_id:
            argv.extend(["--resume", clean_session_id(context.resume_session_id)])
        if model:
            argv.extend(["--model", model])
        return argv

    async def run(
        self,
        context: ClaudeSessionContext,
        on_record: RecordCallback,
        *,
        model: Optional[str] = None,
        permission_mode: Optional[str] = None,
    ) -> ClaudeRunResult:
        """Run once with the requested model, retrying with the fallback model on exit code 1.

        Raises:
            ClaudeProcessError: The CLI failed and no retry was possible or the retry failed too.
        """
        mode = self._permission_mode if permission_mode is None else permission_mode
        try:
            return await self._execute(context, on_record, model, mode)
        except ClaudeProcessError as exc:
            if exc.returncode != RATE_LIMIT_EXIT_CODE or not self._fallback_model or model == self._fallback_model:
                raise
            logger.warning("Claude exited with code 1 (likely rate limit), retrying with %s", self._fallback_model)

        try:
            return await self._execute(context, on_record, self._fallback_model, mode)
        except ClaudeProcessError as exc:
            hint = f"Both the default model and {self._fallback_model} failed. Please wait a moment and try again."
            detail = f"{exc.stderr_tail}\n\n{hint}" if exc.stderr_tail else hint
            raise ClaudeProcessError(exc.returncode, detail) from exc

    async def _execute(
        self,
        context: ClaudeSessionContext,
        on_record: RecordCallback,
        model: Optional[str],
        permission_mode: str,
    ) -> ClaudeRunResult:
        result = ClaudeRunResult(model_used=model or "Default", session_id=context.session_id)
        argv = self.build_argv(context, model, permission_mode)
        logger.info("Claude Code: running with %s model in %s", result.model_used, context.work_dir)

        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=context.work_dir,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_STREAM_LIMIT,
        )
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain_stderr(process, stderr_tail), name="claude-stderr")
        abort_task = asyncio.create_task(self._terminate_on_abort(context, process), name="claude-abort-watch")

        try:
            if process.stdout is None:
                raise RuntimeError("Claude Code subprocess was started without a stdout pipe")
            async for raw_line in process.stdout:
                if context.aborted:
                    logger.info("Claude Code: abort signal detected, stopping iteration")
                    break
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON output line: %r", line[:200])
                    continue
                if not isinstance(record, dict):
                    continue
                result.records += 1
                self._absorb_record(result, record)
                on_record(record)
            returncode = await process.wait()
        finally:
            abort_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await abort_task
            if process.returncode is None:
                process.terminate()
                await process.wait()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task

        if context.aborted or returncode == ABORT_EXIT_CODE or returncode == -15:
            logger.info("Claude Code: process terminated by abort signal")
            result.aborted = True
            return result
        if returncode != 0:
            raise ClaudeProcessError(returncode, "\n".join(stderr_tail).strip())
        if not result.response:
            result.response = "No response received"
        return result

    @staticmethod
    def _absorb_record(result: ClaudeRunResult, record: dict[str, object]) -> None:
        session_id = record.get("session_id")
        if isinstance(session_id, str) and session_id:
            result.session_id = session_id
        record_type = record.get("type")
        if record_type == "assistant":
            message = record.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, list):
                text = "".join(
                    str(block.get("text", "")) for block in content if isinstance(block, dict) and block.get("type") == "text"
                )
                if text:
                    result.response = text
        elif record_type == "result":
            cost = record.get("total_cost_usd")
            duration = record.get("duration_ms")
            if isinstance(cost, (int, float)):
                result.total_cost_usd = float(cost)
            if isinstance(duration, (int, float)):
                result.duration_ms = float(duration)
            if record.get("is_error"):
                result.extra["result_error"] = record.get("result")

    @staticmethod
    async def _drain_stderr(process: asyncio.subprocess.Process, tail: deque[str]) -> None:
        if process.stderr is None:
            return
        async for raw_line in process.stderr:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                tail.append(line)
                logger.debug("claude stderr: %s", line)

    @staticmethod
    async def _terminate_on_abort(context: ClaudeSessionContext, process: asyncio.subprocess.Process) -> None:
        await context.abort_event.wait()
        if process.returncode is None:
            logger.info("Terminating Claude Code process (pid=%s)", process.pid)
            process.terminate()
