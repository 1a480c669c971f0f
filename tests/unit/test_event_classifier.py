"""Unit tests for progress line summaries and the skip filter."""

from discoclaude.core.event_classifier import (
    EMPTY_THINKING_LINE,
    OTHER_OUTPUT_LINE,
    clean_tool_result,
    should_skip_message,
    summarize_message,
    truncate,
)
from discoclaude.core.models import ClaudeMessage, MessageKind, SystemSubtype


def _tool(name: str, **tool_input: object) -> ClaudeMessage:
    return ClaudeMessage(type=MessageKind.TOOL_USE, metadata={"name": name, "input": tool_input})


def test_truncate_marks_cut_with_ellipsis():
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"


def test_text_message_is_quoted():
    line = summarize_message(ClaudeMessage(type=MessageKind.TEXT, content="  Hello there  "))
    assert line == "\\> Hello there"


def test_whitespace_only_text_produces_nothing():
    assert summarize_message(ClaudeMessage(type=MessageKind.TEXT, content="   \n ")) is None


def test_bash_command_truncated_to_80_chars():
    line = summarize_message(_tool("Bash", command="a" * 200))

    assert line is not None
    assert "a" * 80 + "..." in line
    assert "a" * 81 not in line


def test_file_tools_show_path():
    assert summarize_message(_tool("Edit", file_path="/src/app.py")) == "**Edit** — `/src/app.py`"
    assert summarize_message(_tool("Read")) == "**Read** — `unknown`"


def test_search_tools_show_pattern_or_glob():
    assert summarize_message(_tool("Grep", pattern="TODO")) == "**Grep** — `TODO`"
    assert summarize_message(_tool("Glob", glob="**/*.py")) == "**Glob** — `**/*.py`"


def test_todo_write_counts_items():
    line = summarize_message(_tool("TodoWrite", todos=[{"content": "a"}, {"content": "b"}]))
    assert line == "**Todo** — 2 item(s)"


def test_task_shows_description():
    assert summarize_message(_tool("Task", description="Explore repo")) == "**Task** — Explore repo"


def test_unknown_tool_shows_compact_json():
    line = summarize_message(_tool("WebFetch", url="https://example.com"))
    assert line == '**WebFetch** — `{"url":"https://example.com"}`'


def test_tool_result_strips_system_reminder():
    msg = ClaudeMessage(
        type=MessageKind.TOOL_RESULT,
        content="<system-reminder>x</system-reminder>\n\n\nok",
    )
    assert summarize_message(msg) == "Result — ok"


def test_multiline_tool_result_reports_line_count():
    msg = ClaudeMessage(type=MessageKind.TOOL_RESULT, content="one\ntwo\nthree")
    assert summarize_message(msg) == "Result — 3 line(s)"


def test_long_single_line_result_reports_line_count():
    msg = ClaudeMessage(type=MessageKind.TOOL_RESULT, content="x" * 101)
    assert summarize_message(msg) == "Result — 1 line(s)"


def test_empty_tool_result_produces_nothing():
    msg = ClaudeMessage(type=MessageKind.TOOL_RESULT, content="<system-reminder>only</system-reminder>")
    assert summarize_message(msg) is None


def test_clean_tool_result_collapses_blank_runs():
    assert clean_tool_result("a\n\n\n\nb") == "a\n\nb"


def test_thinking_preview_and_empty_placeholder():
    assert summarize_message(ClaudeMessage(type=MessageKind.THINKING, content="")) == EMPTY_THINKING_LINE
    line = summarize_message(ClaudeMessage(type=MessageKind.THINKING, content="t" * 200))
    assert line == f"*Thinking: {'t' * 150}...*"


def test_other_and_system_messages():
    assert summarize_message(ClaudeMessage(type=MessageKind.OTHER)) == OTHER_OUTPUT_LINE
    assert summarize_message(ClaudeMessage.system(SystemSubtype.INFO)) is None


def test_skip_by_type_and_subtype():
    skip = frozenset({"thinking", "system:info"})

    assert should_skip_message(ClaudeMessage(type=MessageKind.THINKING, content="x"), skip)
    assert should_skip_message(ClaudeMessage.system(SystemSubtype.INFO), skip)
    assert not should_skip_message(ClaudeMessage.system(SystemSubtype.SHUTDOWN), skip)
    assert not should_skip_message(ClaudeMessage(type=MessageKind.TEXT, content="x"), skip)


def test_terminal_messages_are_never_skipped():
    skip = frozenset({"system", "system:completion", "system:failure"})

    assert not should_skip_message(ClaudeMessage.system(SystemSubtype.COMPLETION), skip)
    assert not should_skip_message(ClaudeMessage.system(SystemSubtype.FAILURE, "boom"), skip)
