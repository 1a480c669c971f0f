"""Unit tests for the streaming progress aggregator."""

import asyncio

import pytest

from discoclaude.constants import COLOR_FAILURE, COLOR_SUCCESS, FULL_TEXT_FILENAME
from discoclaude.core.claude_sender import ClaudeSender, create_action_buttons
from discoclaude.core.models import ClaudeMessage, MessageContent, MessageKind, SystemSubtype

DEBOUNCE_MS = 20


class FakeSender:
    """Records send/edit calls; ids are sequential strings."""

    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.sent: list[MessageContent] = []
        self.edits: list[tuple[str, MessageContent]] = []
        self.fail_edits = False
        self.fail_sends = False
        self._next_id = 100

    async def send_message(self, content: MessageContent) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_sends:
            raise RuntimeError("send failed")
        self._next_id += 1
        self.sent.append(content)
        return str(self._next_id)

    async def edit_message(self, message_id: str, content: MessageContent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_edits:
            raise RuntimeError("edit failed")
        self.edits.append((message_id, content))


def _text(content: str) -> ClaudeMessage:
    return ClaudeMessage(type=MessageKind.TEXT, content=content)


def _completion(**metadata: object) -> ClaudeMessage:
    return ClaudeMessage.system(SystemSubtype.COMPLETION, **metadata)  # type: ignore[arg-type]


def _make(sender: FakeSender, **kwargs: object) -> ClaudeSender:
    return ClaudeSender(sender, debounce_ms=DEBOUNCE_MS, **kwargs)  # type: ignore[arg-type]


async def _wait_for_debounce() -> None:
    await asyncio.sleep(DEBOUNCE_MS / 1000 * 4)


@pytest.mark.asyncio
async def test_first_line_creates_message_and_later_lines_edit_after_debounce():
    fake = FakeSender()
    sender = _make(fake)

    await sender.send_claude_messages([_text("one")])
    assert len(fake.sent) == 1
    assert sender.state.message_id == "101"

    await sender.send_claude_messages([_text("two")])
    await sender.send_claude_messages([_text("three")])
    assert fake.edits == []

    await _wait_for_debounce()

    assert len(fake.edits) == 1
    message_id, content = fake.edits[0]
    assert message_id == "101"
    assert content.embeds[0].description == "\\> one\n\n\\> two\n\n\\> three"
    await sender.close()


@pytest.mark.asyncio
async def test_reset_with_message_id_edits_that_message_on_completion():
    fake = FakeSender()
    sender = _make(fake)

    sender.reset_progress(None, "msg123")
    await sender.send_claude_messages([_completion(session_id="abc")])

    assert fake.sent == []
    assert len(fake.edits) == 1
    assert fake.edits[0][0] == "msg123"
    assert fake.edits[0][1].embeds[0].color == COLOR_SUCCESS
    await sender.close()


@pytest.mark.asyncio
async def test_overlapping_batches_are_not_interleaved():
    fake = FakeSender(delay=0.01)
    sender = _make(fake)

    first = sender.send_claude_messages([_text("a"), _text("b")])
    second = sender.send_claude_messages([_text("c")])
    await asyncio.gather(first, second)

    assert sender.state.lines == ["\\> a", "\\> b", "\\> c"]
    assert len(fake.sent) == 1
    await sender.close()


@pytest.mark.asyncio
async def test_completion_during_pending_debounce_writes_exactly_one_edit():
    fake = FakeSender()
    sender = _make(fake)
    sender.reset_progress("prompt", "live-1")

    await sender.send_claude_messages([_text("before")])
    assert sender.state.pending_edit

    await sender.send_claude_messages([_completion(session_id="s-1", model="opus", total_cost_usd=0.1234567)])
    await _wait_for_debounce()

    assert len(fake.edits) == 1
    message_id, content = fake.edits[0]
    embed = content.embeds[0]
    assert message_id == "live-1"
    assert embed.description == "\\> before"
    assert {f.name: f.value for f in embed.fields}["Cost"] == "$0.1235"
    await sender.close()


@pytest.mark.asyncio
async def test_completion_waits_for_inflight_edit():
    fake = FakeSender(delay=0.03)
    sender = _make(fake)
    sender.reset_progress(None, "live-2")

    await sender.send_claude_messages([_text("x")])
    await asyncio.sleep(DEBOUNCE_MS / 1000 * 1.5)
    assert sender.state.inflight_edit is not None

    await sender.send_claude_messages([_completion()])

    assert len(fake.edits) == 2
    assert fake.edits[-1][1].embeds[0].color == COLOR_SUCCESS
    await sender.close()


@pytest.mark.asyncio
async def test_terminal_edit_failure_falls_back_to_new_message():
    fake = FakeSender()
    sender = _make(fake)
    sender.reset_progress(None, "gone")
    fake.fail_edits = True

    await sender.send_claude_messages([ClaudeMessage.system(SystemSubtype.FAILURE, "x" * 300)])

    assert len(fake.sent) == 1
    embed = fake.sent[0].embeds[0]
    assert embed.color == COLOR_FAILURE
    error = {f.name: f.value for f in embed.fields}["Error"]
    assert error == "x" * 200 + "..."
    assert fake.sent[0].components == []
    await sender.close()


@pytest.mark.asyncio
async def test_completion_with_session_id_has_action_and_workflow_rows():
    fake = FakeSender()
    sender = _make(fake)

    await sender.send_claude_messages([_completion(session_id="sess-9", duration_ms=1234)])

    content = fake.sent[0]
    assert [b.custom_id for b in content.components[0].buttons] == [
        b.custom_id for b in create_action_buttons("sess-9")
    ]
    assert content.components[1].buttons[0].custom_id == "workflow:git-status"
    assert {f.name: f.value for f in content.embeds[0].fields}["Duration"] == "1.23s"
    await sender.close()


@pytest.mark.asyncio
async def test_long_text_is_attached_as_file_even_when_suppressed():
    fake = FakeSender()
    sender = _make(fake, skip_types=frozenset({"text"}))

    await sender.send_claude_messages([_text("a" * 1500), _text("b" * 1500)])
    assert fake.sent == []

    await sender.send_claude_messages([_completion()])

    files = fake.sent[0].files
    assert len(files) == 1
    assert files[0].name == FULL_TEXT_FILENAME
    assert files[0].data.decode("utf-8") == "a" * 1500 + "\n\n---\n\n" + "b" * 1500
    await sender.close()


@pytest.mark.asyncio
async def test_messages_after_finish_are_ignored():
    fake = FakeSender()
    sender = _make(fake)

    await sender.send_claude_messages([_text("one"), _completion()])
    await sender.send_claude_messages([_text("late")])
    await _wait_for_debounce()

    assert sender.state.lines == ["\\> one"]
    assert len(fake.edits) == 1
    await sender.close()


@pytest.mark.asyncio
async def test_shutdown_is_standalone_message():
    fake = FakeSender()
    sender = _make(fake)

    await sender.send_claude_messages(
        [
            ClaudeMessage.system(
                SystemSubtype.SHUTDOWN, signal="SIGTERM", category_name="cat", repo_name="repo", branch_name="main"
            )
        ]
    )

    embed = fake.sent[0].embeds[0]
    assert embed.title == "Shutdown"
    assert embed.description == "Bot stopped by signal SIGTERM"
    assert sender.state.message_id is None
    await sender.close()


@pytest.mark.asyncio
async def test_failed_create_is_logged_and_retried_on_next_line():
    fake = FakeSender()
    sender = _make(fake)
    fake.fail_sends = True

    await sender.send_claude_messages([_text("one")])
    assert sender.state.message_id is None

    fake.fail_sends = False
    await sender.send_claude_messages([_text("two")])

    assert sender.state.message_id == "101"
    assert fake.sent[0].embeds[0].description == "\\> one\n\n\\> two"
    await sender.close()


@pytest.mark.asyncio
async def test_rendered_description_stays_within_length_limit():
    fake = FakeSender()
    sender = _make(fake, max_description_length=200)

    for i in range(30):
        await sender.send_claude_messages([_text(f"message number {i}")])

    state = sender.state
    assert len(state.render_description()) <= 200
    assert state.trimmed_count + len(state.lines) == 30
    assert state.lines[-1] == "\\> message number 29"
    await sender.close()


@pytest.mark.asyncio
async def test_reset_cancels_pending_timer():
    fake = FakeSender()
    sender = _make(fake)
    sender.reset_progress(None, "m1")
    await sender.send_claude_messages([_text("x")])

    sender.reset_progress()
    await _wait_for_debounce()

    assert fake.edits == []
    assert sender.state.lines == []
    await sender.close()


@pytest.mark.asyncio
async def test_replaced_run_finalizes_only_its_own_message():
    fake = FakeSender()
    sender = _make(fake)
    first = sender.reset_progress("first", "m-a")
    await sender.send_claude_messages([_text("a")], first)

    second = sender.reset_progress("second", "m-b")
    await sender.send_claude_messages([_completion(session_id="sess-a")], first)

    assert sender.state.message_id == "m-b"
    assert not sender.state.finished
    assert sender.state.lines == []

    await sender.send_claude_messages([_text("b")], second)
    await sender.send_claude_messages([_completion(session_id="sess-b")], second)
    await sender.send_claude_messages([_text("late")], first)
    await _wait_for_debounce()

    assert [(message_id, content.embeds[0].description) for message_id, content in fake.edits] == [
        ("m-a", "\\> a"),
        ("m-b", "\\> b"),
    ]
    b_fields = {f.name: f.value for f in fake.edits[1][1].embeds[0].fields}
    assert b_fields["Session ID"] == "`sess-b`"
    assert fake.sent == []
    assert second == first + 1
    await sender.close()


@pytest.mark.asyncio
async def test_untagged_batches_follow_the_current_run():
    fake = FakeSender()
    sender = _make(fake)
    sender.reset_progress(None, "m-a")
    sender.reset_progress(None, "m-b")

    await sender.send_claude_messages([_text("x"), _completion()])

    assert [message_id for message_id, _ in fake.edits] == ["m-b"]
    await sender.close()
