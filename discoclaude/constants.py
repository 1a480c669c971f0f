"""Constants used across DiscoClaude.

This module defines shared constants to ensure consistency.
"""

# Progress embed rendering (internal, not user-configurable)
MAX_DESCRIPTION_LENGTH = 3800  # Discord embed description limit (4096) minus headroom
EDIT_DEBOUNCE_MS = 1500  # Delay before a scheduled progress edit fires
FULL_TEXT_ATTACHMENT_THRESHOLD = 2000  # Assistant text longer than this is attached as a file
FULL_TEXT_SEPARATOR = "\n\n---\n\n"
FULL_TEXT_FILENAME = "response.md"

# Summary line truncation
TEXT_PREVIEW_MAX_CHARS = 1000
THINKING_PREVIEW_MAX_CHARS = 150
TOOL_PREVIEW_MAX_CHARS = 80
INLINE_RESULT_MAX_CHARS = 100
ERROR_PREVIEW_MAX_CHARS = 200
PROMPT_PREVIEW_MAX_CHARS = 200

# Embed colors
COLOR_RUNNING = 0xFFFF00
COLOR_SUCCESS = 0x00FF00
COLOR_FAILURE = 0xFF0000
COLOR_NEUTRAL = 0xAAAAAA

PROGRESS_TITLE = "Claude Code Running..."
COMPLETION_TITLE = "Claude Code Complete"
FAILURE_TITLE = "Claude Code Failed"

# Git
BARE_WORKTREE_PREFERENCES = ("main", "master")
STATUS_MAX_CHANGES = 10
STATUS_IGNORED_PATTERNS = ("deno.lock", ".DS_Store", "node_modules/")

# Claude CLI
DEFAULT_CONTINUE_PROMPT = "Please continue."
ABORT_EXIT_CODE = 143
RATE_LIMIT_EXIT_CODE = 1
STDERR_TAIL_LINES = 20

# Daemon
DEFAULT_LOG_LEVEL = "INFO"
DISCORD_READY_TIMEOUT_S = 20.0
