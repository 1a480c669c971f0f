"""Unit tests for MessageSerializer ordering and failure isolation."""

import asyncio

import pytest

from discoclaude.core.message_queue import MessageSerializer


@pytest.mark.asyncio
async def test_items_processed_in_submission_order_without_overlap():
    processed: list[str] = []
    active = 0
    max_active = 0

    async def handler(item: str) -> None:
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01 if item == "first" else 0)
        processed.append(item)
        active -= 1

    serializer: MessageSerializer[str] = MessageSerializer(handler)
    first = serializer.submit("first")
    second = serializer.submit("second")
    third = serializer.submit("third")

    await asyncio.gather(first, second, third)

    assert processed == ["first", "second", "third"]
    assert max_active == 1
    await serializer.stop()


@pytest.mark.asyncio
async def test_future_resolves_only_after_item_processed():
    done = asyncio.Event()

    async def handler(_item: int) -> None:
        await asyncio.sleep(0.01)
        done.set()

    serializer: MessageSerializer[int] = MessageSerializer(handler)
    await serializer.submit(1)

    assert done.is_set()
    await serializer.stop()


@pytest.mark.asyncio
async def test_failing_item_does_not_block_later_items():
    processed: list[int] = []

    async def handler(item: int) -> None:
        if item == 1:
            raise RuntimeError("boom")
        processed.append(item)

    serializer: MessageSerializer[int] = MessageSerializer(handler)
    failed = serializer.submit(1)
    ok = serializer.submit(2)

    await failed
    await ok

    assert processed == [2]
    assert (serializer.processed, serializer.failed) == (1, 1)
    await serializer.stop()


@pytest.mark.asyncio
async def test_stop_cancels_queued_items():
    gate = asyncio.Event()

    async def handler(_item: int) -> None:
        await gate.wait()

    serializer: MessageSerializer[int] = MessageSerializer(handler)
    running = serializer.submit(1)
    queued = serializer.submit(2)
    await asyncio.sleep(0)

    await serializer.stop()

    assert running.cancelled()
    assert queued.cancelled()
    assert serializer.pending == 0
