"""Git operations exposed to the bot: worktree management, repo info, status.

All functions are synchronous; the Discord adapter calls them through
`asyncio.to_thread` so git never blocks the event loop.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from typing import Optional

from discoclaude.constants import STATUS_IGNORED_PATTERNS, STATUS_MAX_CHANGES
from discoclaude.git import runner
from discoclaude.git.repo_helpers import (
    ResolutionStrategy,
    find_worktree_for_bare_repo,
    find_worktree_for_branch,
    is_bare_repository,
    resolve_base_repo_dir,
)
from discoclaude.git.types import (
    GitInfo,
    GitInvocationError,
    GitOk,
    GitResult,
    GitStatus,
    NotAGitRepositoryError,
    WorktreeListResult,
    WorktreeResult,
)

logger = logging.getLogger(__name__)

# https://host/user/repo.git, git@host:user/repo.git, https://host/user/repo
_REMOTE_REPO_RE = re.compile(r"[/:]([^/:\s]+?)(\.git)?\s*$")
_TOPOLOGY_COMMANDS = ("worktree", "rev-parse --git-dir", "rev-parse --is-bare-repository")


def _split_command(command: str) -> list[str]:
    args = shlex.split(command)
    if args and args[0] == "git":
        args = args[1:]
    return args


def execute_git_command(work_dir: str, command: str, *, force_bare: bool = False) -> GitResult:
    """Run a user-supplied git command line such as `git log --oneline -5`.

    A working directory that no longer exists falls back to the process cwd.
    In a bare repository, commands other than worktree/topology queries run in
    the preferred worktree, since a bare repo has no working tree of its own.
    """
    actual_dir = work_dir
    if not os.path.isdir(actual_dir):
        actual_dir = os.getcwd()
        logger.warning("Working directory %s does not exist, using %s instead", work_dir, actual_dir)

    if not any(marker in command for marker in _TOPOLOGY_COMMANDS):
        if is_bare_repository(actual_dir, force_bare=force_bare):
            worktree_dir = find_worktree_for_bare_repo(actual_dir)
            if worktree_dir:
                logger.info("Using worktree directory for bare repo: %s", worktree_dir)
                actual_dir = worktree_dir

    try:
        args = _split_command(command)
    except ValueError as exc:
        return GitInvocationError(cause=f"Could not parse command: {exc}")
    return runner.run_git(actual_dir, *args)


def create_worktree(
    work_dir: str,
    branch: str,
    ref: Optional[str] = None,
    *,
    force_bare: bool = False,
    strategy: ResolutionStrategy = ResolutionStrategy.LEGACY,
) -> WorktreeResult:
    """Create (or find) the worktree for `branch`.

    Bare repositories hold their worktrees inside the repo directory; normal
    repositories get a sibling directory. Calling this twice for the same
    branch returns the first worktree flagged `is_existing`.
    """
    base_dir = resolve_base_repo_dir(work_dir, strategy)
    logger.debug("create_worktree: %s -> base %s", work_dir, base_dir)

    existing = find_worktree_for_branch(base_dir, branch)
    if existing:
        return WorktreeResult(full_path=existing, base_dir=base_dir, is_existing=True)

    is_bare = is_bare_repository(base_dir, force_bare=force_bare)
    if is_bare:
        target = os.path.join(base_dir, branch)
    else:
        target = os.path.normpath(os.path.join(base_dir, os.pardir, branch))

    if os.path.exists(target):
        return WorktreeResult(full_path=target, base_dir=base_dir, error=f"Directory '{target}' already exists.")

    branch_check = runner.run_git(base_dir, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
    branch_exists = isinstance(branch_check, GitOk)

    # Branch names with slashes nest the target; git will not create the parents.
    os.makedirs(os.path.dirname(target), exist_ok=True)

    if branch_exists:
        logger.info("Branch '%s' exists, adding worktree at %s", branch, target)
        outcome = runner.run_git(base_dir, "worktree", "add", target, branch)
    else:
        start_point = ref or "HEAD"
        logger.info("Creating branch '%s' from %s at %s", branch, start_point, target)
        outcome = runner.run_git(base_dir, "worktree", "add", target, "-b", branch, start_point)

    return WorktreeResult(full_path=target, base_dir=base_dir, outcome=outcome)


def list_worktrees(work_dir: str, *, strategy: ResolutionStrategy = ResolutionStrategy.LEGACY) -> WorktreeListResult:
    base_dir = resolve_base_repo_dir(work_dir, strategy)
    return WorktreeListResult(outcome=runner.run_git(base_dir, "worktree", "list"), base_dir=base_dir)


def remove_worktree(
    work_dir: str, branch: str, *, strategy: ResolutionStrategy = ResolutionStrategy.LEGACY
) -> WorktreeResult:
    """Remove the worktree checked out on `branch`, discarding local changes."""
    base_dir = resolve_base_repo_dir(work_dir, strategy)
    path = find_worktree_for_branch(base_dir, branch)
    if not path:
        return WorktreeResult(full_path="", base_dir=base_dir, error=f"Worktree for branch '{branch}' not found.")

    outcome = runner.run_git(base_dir, "worktree", "remove", path, "--force")
    return WorktreeResult(full_path=path, base_dir=base_dir, outcome=outcome)


def get_git_info(work_dir: Optional[str] = None) -> GitInfo:
    """Return repository name and current branch.

    Raises:
        NotAGitRepositoryError: `work_dir` is not inside a git repository
    """
    work_dir = work_dir or os.getcwd()
    branch_result = runner.run_git(work_dir, "branch", "--show-current")
    if not isinstance(branch_result, GitOk):
        logger.error("Failed to get git information for %s: %s", work_dir, branch_result.text)
        raise NotAGitRepositoryError("This directory is not a Git repository")

    branch = branch_result.output.strip() or "main"
    repo_name = os.path.basename(os.path.abspath(work_dir).rstrip(os.sep))

    remote = runner.run_git(work_dir, "config", "--get", "remote.origin.url")
    if isinstance(remote, GitOk) and remote.output.strip():
        match = _REMOTE_REPO_RE.search(remote.output.strip())
        if match:
            repo_name = match.group(1)

    if repo_name.endswith(".git"):
        repo_name = repo_name[: -len(".git")]
    return GitInfo(repo=repo_name, branch=branch)


def _classify_change(code: str) -> str:
    if code == "??":
        return "Untracked"
    for letter, label in (("M", "Modified"), ("A", "Added"), ("D", "Deleted"), ("R", "Renamed")):
        if letter in code:
            return label
    return "Changed"


def format_status(porcelain: str) -> str:
    """Summarize `git status --porcelain` output for display."""
    changes = []
    for line in porcelain.strip("\n").splitlines():
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        if any(pattern in path for pattern in STATUS_IGNORED_PATTERNS):
            continue
        changes.append(f"{_classify_change(code)}: {path}")

    if not changes:
        return "Working directory clean"
    text = "\n".join(changes[:STATUS_MAX_CHANGES])
    if len(changes) > STATUS_MAX_CHANGES:
        text += f"\n... and {len(changes) - STATUS_MAX_CHANGES} more files"
    return text


def format_remotes(remote_output: str) -> str:
    remotes = []
    for line in remote_output.strip().splitlines():
        if "(fetch)" not in line:
            continue
        parts = line.split()
        remotes.append(f"{parts[0]}: {parts[1]}")
    return "\n".join(remotes) or "No remotes configured"


def get_git_status(work_dir: str, *, force_bare: bool = False) -> GitStatus:
    status = execute_git_command(work_dir, "git status --porcelain", force_bare=force_bare)
    branch = execute_git_command(work_dir, "git branch --show-current", force_bare=force_bare)
    remotes = execute_git_command(work_dir, "git remote -v", force_bare=force_bare)

    return GitStatus(
        status=format_status(status.output) if isinstance(status, GitOk) else "Working directory clean",
        branch=(branch.output.strip() if isinstance(branch, GitOk) else "") or "unknown",
        remote=format_remotes(remotes.output) if isinstance(remotes, GitOk) else "No remotes configured",
    )
