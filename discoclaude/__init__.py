"""DiscoClaude - relay Claude Code sessions into Discord."""

__version__ = "0.3.0"
