"""FIFO serializer for work that must never interleave.

Every submitted item is handed to a single worker task which processes items
strictly one at a time, in submission order. A failing item is logged and
discarded; the queue keeps running for the items behind it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageSerializer(Generic[T]):
    """Single-consumer FIFO queue around an async handler.

    Example:
        serializer = MessageSerializer(process_batch, name="claude-sender")
        await serializer.submit(batch)  # resolves once this batch is fully handled
    """

    def __init__(self, handler: Callable[[T], Awaitable[None]], *, name: str = "message-serializer") -> None:
        self._handler = handler
        self._name = name
        self._queue: asyncio.Queue[tuple[T, asyncio.Future[None]]] | None = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._processed = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> asyncio.Queue[tuple[T, asyncio.Future[None]]]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(self._queue), name=self._name)
        return self._queue

    async def stop(self) -> None:
        """Cancel the worker; items still queued are cancelled too."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if not future.done():
                    future.cancel()
        self._queue = None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, item: T) -> asyncio.Future[None]:
        """Enqueue an item and return a future resolved after it was processed.

        The item's position is fixed at call time, so callers that fire several
        submissions without awaiting still get them processed in call order.
        Processing failures resolve the future normally (they are logged, not raised).
        """
        queue = self._ensure_worker()
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        queue.put_nowait((item, future))
        return future

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def processed(self) -> int:
        """Items whose handler returned normally."""
        return self._processed

    @property
    def failed(self) -> int:
        """Items whose handler raised; they were logged and skipped."""
        return self._failed

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self, queue: asyncio.Queue[tuple[T, asyncio.Future[None]]]) -> None:
        while True:
            item, future = await queue.get()
            try:
                await self._handler(item)
                self._processed += 1
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception:
                self._failed += 1
                logger.error("[%s] Item processing failed; continuing with next item", self._name, exc_info=True)
            finally:
                queue.task_done()
            if not future.done():
                future.set_result(None)
