"""Result and listing types for git operations.

Every git invocation yields exactly one of three outcomes:

- GitOk: the command ran and exited 0
- GitToolError: the command ran and reported a failure (non-zero exit)
- GitInvocationError: git could not be run at all (missing binary, bad cwd)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class GitOk:
    output: str

    ok = True

    @property
    def text(self) -> str:
        return self.output or "Command executed successfully."


@dataclass(frozen=True)
class GitToolError:
    returncode: int
    stderr: str
    stdout: str = ""

    ok = False

    @property
    def text(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"Command failed with exit code {self.returncode}"


@dataclass(frozen=True)
class GitInvocationError:
    cause: str

    ok = False

    @property
    def text(self) -> str:
        return f"Execution error: {self.cause}"


GitResult = Union[GitOk, GitToolError, GitInvocationError]


class NotAGitRepositoryError(Exception):
    """Raised when repository information is requested for a non-repository directory."""


@dataclass(frozen=True)
class WorktreeInfo:
    path: str
    branch: Optional[str]
    is_bare: bool = False


@dataclass(frozen=True)
class WorktreeResult:
    """Outcome of a worktree create/remove request.

    Attributes:
        full_path: Worktree path the request resolved to (empty when unknown)
        base_dir: Resolved base repository directory
        outcome: Result of the git command, when one was run
        error: Precondition failure detected before running git
        is_existing: The worktree was already present (create is idempotent)
    """

    full_path: str
    base_dir: str
    outcome: Optional[GitResult] = None
    error: Optional[str] = None
    is_existing: bool = False

    @property
    def ok(self) -> bool:
        if self.error is not None:
            return False
        return self.outcome is None or self.outcome.ok

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error
        if self.is_existing:
            return f"Found existing worktree. Path: {self.full_path}"
        return self.outcome.text if self.outcome is not None else ""


@dataclass(frozen=True)
class WorktreeListResult:
    outcome: GitResult
    base_dir: str


@dataclass(frozen=True)
class GitInfo:
    repo: str
    branch: str


@dataclass(frozen=True)
class GitStatus:
    status: str
    branch: str
    remote: str
