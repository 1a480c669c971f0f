"""Git worktree topology and command helpers."""
