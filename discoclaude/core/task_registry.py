"""Registry for background asyncio tasks spawned by the bot.

Slash commands start Claude runs as background tasks so the interaction
handler can return immediately; the registry keeps a reference to each task
and cancels whatever is still running at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskRegistry:
    """Tracks spawned tasks until they finish.

    Example:
        registry = TaskRegistry()
        registry.spawn(handlers.on_claude(ctx, prompt), name="claude-run")
        await registry.shutdown(timeout=5.0)
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def spawn(self, coro: Coroutine[object, object, T], name: str | None = None) -> asyncio.Task[T]:
        """Create a task and track it until completion."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)  # type: ignore[arg-type]
        task.add_done_callback(self._on_task_done)  # type: ignore[arg-type]
        logger.debug("Spawned tracked task: %s (total: %d)", name or f"<unnamed-{id(task)}>", len(self._tasks))
        return task

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait up to `timeout` seconds for them."""
        if not self._tasks:
            return

        task_count = len(self._tasks)
        logger.info("Shutting down %d tracked tasks (timeout=%.1fs)", task_count, timeout)
        for task in self._tasks:
            if not task.done():
                task.cancel()

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Shutdown timeout: %d/%d tasks still pending after %.1fs", len(pending), task_count, timeout)
            for task in pending:
                logger.warning("Pending task: %s", task.get_name())

    def task_count(self) -> int:
        return len(self._tasks)
