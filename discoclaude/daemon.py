"""DiscoClaude main daemon."""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from discoclaude.adapters.discord_adapter import DiscordAdapter
from discoclaude.config import Config, config  # config.py loads .env at import time
from discoclaude.core.claude_client import ClaudeClient
from discoclaude.core.claude_handlers import ClaudeHandlers
from discoclaude.core.claude_sender import ClaudeSender
from discoclaude.core.models import ClaudeMessage, SystemSubtype
from discoclaude.core.task_registry import TaskRegistry
from discoclaude.git.handler import get_git_info
from discoclaude.git.repo_helpers import find_worktree_for_bare_repo, is_bare_repository
from discoclaude.git.types import GitInfo, NotAGitRepositoryError
from discoclaude.logging_config import setup_logging

# Startup retry configuration
STARTUP_MAX_RETRIES = 3
STARTUP_RETRY_DELAYS = [10, 20, 40]  # Exponential backoff in seconds
SHUTDOWN_TASK_TIMEOUT_S = 5.0

logger = logging.getLogger(__name__)


def _is_retryable_startup_error(error: Exception) -> bool:
    """Check if startup error is transient (DNS, refused connection, timeout)."""
    retryable_types = ("ClientConnectorError", "ConnectionError", "TimeoutError", "OSError")
    retryable_messages = ("name resolution", "connection refused", "timed out", "temporary failure")

    if type(error).__name__ in retryable_types:
        return True
    return any(msg in str(error).lower() for msg in retryable_messages)


def resolve_startup_work_dir(cfg: Config) -> str:
    """Pick the directory the bot works in.

    A bare repository has no working tree, so the main bot switches to its
    preferred worktree. Worktree bots are started inside their worktree already.
    """
    work_dir = os.path.abspath(cfg.work_dir)
    if cfg.worktree_bot:
        return work_dir
    if not is_bare_repository(work_dir, force_bare=cfg.git.force_bare):
        return work_dir

    worktree = find_worktree_for_bare_repo(work_dir)
    if worktree:
        logger.info("Bare repository detected, using worktree %s", worktree)
        return worktree
    logger.warning("Bare repository %s has no usable worktree; staying in the bare directory", work_dir)
    return work_dir


class DiscoClaudeDaemon:
    """Wires configuration, git context, the Claude pipeline and the Discord adapter."""

    def __init__(self, cfg: Config) -> None:
        self.config = cfg
        self.shutdown_event = asyncio.Event()
        self.shutdown_signal: Optional[str] = None
        self.task_registry = TaskRegistry()
        self.work_dir = resolve_startup_work_dir(cfg)
        self.git_info: GitInfo = get_git_info(self.work_dir)

        self.adapter = DiscordAdapter(
            cfg.discord,
            work_dir=self.work_dir,
            repo_name=self.git_info.repo,
            branch_name=self.git_info.branch,
            force_bare=cfg.git.force_bare,
            resolution_strategy=cfg.git.resolution_strategy,
            task_registry=self.task_registry,
        )
        self.sender = ClaudeSender(self.adapter, skip_types=cfg.claude.skip_types)
        self.handlers = ClaudeHandlers(
            work_dir=self.work_dir,
            client=ClaudeClient(
                cfg.claude.command,
                fallback_model=cfg.claude.fallback_model,
                permission_mode=cfg.claude.permission_mode,
            ),
            sender=self.sender,
        )
        self.adapter.attach_handlers(self.handlers)

    async def start(self) -> None:
        logger.info(
            "Starting DiscoClaude for %s (%s) in %s", self.git_info.repo, self.git_info.branch, self.work_dir
        )
        await self.adapter.start()

    def request_shutdown(self, signal_name: str) -> None:
        self.shutdown_signal = signal_name
        self.shutdown_event.set()

    async def announce_shutdown(self) -> None:
        """Post the shutdown notice to the bot channel."""
        await self.sender.send_claude_messages(
            [
                ClaudeMessage.system(
                    SystemSubtype.SHUTDOWN,
                    signal=self.shutdown_signal or "unknown",
                    category_name=self.adapter.category_name,
                    repo_name=self.git_info.repo,
                    branch_name=self.git_info.branch,
                )
            ]
        )

    async def stop(self) -> None:
        self.handlers.on_cancel()
        if self.shutdown_signal:
            try:
                await self.announce_shutdown()
            except Exception as e:
                logger.warning("Failed to send shutdown notice: %s", e)
        await self.sender.close()
        await self.adapter.stop()
        await self.task_registry.shutdown(timeout=SHUTDOWN_TASK_TIMEOUT_S)


async def main() -> None:
    """Main entry point."""
    setup_logging()

    try:
        daemon = DiscoClaudeDaemon(config)
    except NotAGitRepositoryError as e:
        logger.error("%s: %s", e, config.work_dir)
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.request_shutdown, sig.name)

    try:
        for attempt in range(STARTUP_MAX_RETRIES):
            try:
                await daemon.start()
                break
            except Exception as e:
                if not _is_retryable_startup_error(e):
                    logger.error("Startup failed (non-retryable): %s", e, exc_info=True)
                    sys.exit(1)

                if attempt == STARTUP_MAX_RETRIES - 1:
                    logger.error("Startup failed after %d attempts: %s", STARTUP_MAX_RETRIES, e, exc_info=True)
                    sys.exit(1)

                delay = STARTUP_RETRY_DELAYS[attempt]
                logger.warning(
                    "Startup failed (attempt %d/%d): %s. Retrying in %ds...",
                    attempt + 1,
                    STARTUP_MAX_RETRIES,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

        await daemon.shutdown_event.wait()
        logger.info("Received %s signal, stopping bot...", daemon.shutdown_signal)
    finally:
        try:
            await daemon.stop()
        except Exception as e:
            logger.error("Error during daemon stop: %s", e)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
