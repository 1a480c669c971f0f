"""Repository topology helpers: base repo resolution, bare detection, worktree lookup.

Used for detecting bare repos, resolving base directories and finding
worktrees. Nothing here raises on git failures: missing information falls back
to the common case (not bare, no worktrees, directory unchanged).
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Optional

from discoclaude.constants import BARE_WORKTREE_PREFERENCES
from discoclaude.git import runner
from discoclaude.git.types import GitOk, WorktreeInfo

logger = logging.getLogger(__name__)

_GITDIR_RE = re.compile(r"gitdir:\s*(.+)")
_WORKTREES_SEGMENT = f"{os.sep}worktrees{os.sep}"
_GIT_METADATA_DIR = ".git"
# "<path>  <sha> [branch]" / "<path>  (bare)" / "<path>  <sha> (detached HEAD)"
_LIST_LINE_RE = re.compile(r"^(?P<path>.+?)\s+(?P<rest>(?:[0-9a-f]{7,40}|\(bare\))(?:\s.*)?)$")


class ResolutionStrategy(str, Enum):
    """How a worktree link into a normal repository maps to a base dir.

    LEGACY returns the path preceding `/worktrees/`, so worktrees of a normal
    repo resolve to `<repo>/.git`. FIXED strips that trailing `.git` and
    returns `<repo>`. Both leave a plain repository path unchanged.
    """

    LEGACY = "legacy"
    FIXED = "fixed"


def read_worktree_link(directory: str) -> Optional[str]:
    """Return the absolute gitdir a `.git` link file points to, if `directory` has one."""
    git_file = Path(directory) / _GIT_METADATA_DIR
    if not git_file.is_file():
        return None
    try:
        text = git_file.read_text(encoding="utf-8")
    except OSError:
        return None
    match = _GITDIR_RE.search(text)
    if not match:
        return None
    return os.path.normpath(os.path.join(directory, match.group(1).strip()))


def _base_from_git_dir(git_dir: str, work_dir: str, strategy: ResolutionStrategy) -> str:
    if _WORKTREES_SEGMENT in git_dir:
        base = git_dir.split(_WORKTREES_SEGMENT)[0]
        if strategy == ResolutionStrategy.FIXED and os.path.basename(base) == _GIT_METADATA_DIR:
            return os.path.dirname(base)
        return base
    if os.path.basename(git_dir) == _GIT_METADATA_DIR:
        return work_dir
    return git_dir


def resolve_base_repo_dir(work_dir: str, strategy: ResolutionStrategy = ResolutionStrategy.LEGACY) -> str:
    """Resolve the base repository directory from a worktree or regular repo path.

    For linked worktrees, returns the path preceding `/worktrees/` in the link
    (the bare repository, or `<repo>/.git` for a normal one). For bare
    repositories, returns the bare repository root. Inside a regular repo,
    `work_dir` is returned as given, subdirectories included. Anything git
    cannot answer leaves `work_dir` unchanged.
    """
    work_dir = os.path.abspath(work_dir)

    link = read_worktree_link(work_dir)
    if link is not None:
        if _WORKTREES_SEGMENT in link:
            return _base_from_git_dir(link, work_dir, strategy)
        # gitdir link that is not a worktree (e.g. a submodule)
        return work_dir

    result = runner.run_git(work_dir, "rev-parse", "--git-dir")
    if not isinstance(result, GitOk):
        return work_dir
    git_dir = os.path.normpath(os.path.join(work_dir, result.output.strip()))
    return _base_from_git_dir(git_dir, work_dir, strategy)


def is_bare_repository(repo_dir: str, force_bare: bool = False) -> bool:
    """Check if a repository is bare.

    `force_bare` (configured from GIT_BARE_REPO) short-circuits detection.
    """
    if force_bare:
        return True
    result = runner.run_git(repo_dir, "rev-parse", "--is-bare-repository")
    if isinstance(result, GitOk):
        return result.output.strip().lower() == "true"
    return False


def parse_worktree_porcelain(output: str) -> list[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output.

    Blocks are separated by blank lines; each has `worktree <path>`, then
    `HEAD <sha>` and `branch refs/heads/<name>` (or `bare` / `detached`).
    """
    worktrees: list[WorktreeInfo] = []
    for block in output.split("\n\n"):
        if not block.strip():
            continue
        path = ""
        branch: Optional[str] = None
        is_bare = False
        for line in block.splitlines():
            if line.startswith("worktree "):
                path = line[len("worktree ") :]
            elif line.startswith("branch "):
                ref = line[len("branch ") :]
                branch = ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else ref
            elif line == "bare":
                is_bare = True
        if path:
            worktrees.append(WorktreeInfo(path=path, branch=branch, is_bare=is_bare))
    return worktrees


def get_worktree_list_detailed(base_repo_dir: str) -> list[WorktreeInfo]:
    """List worktrees with their branches; empty on any failure."""
    result = runner.run_git(base_repo_dir, "worktree", "list", "--porcelain")
    if not isinstance(result, GitOk):
        return []
    return parse_worktree_porcelain(result.output)


def _split_list_line(line: str) -> tuple[str, list[str]]:
    """Split one `git worktree list` line into (path, remaining tokens)."""
    stripped = line.strip()
    match = _LIST_LINE_RE.match(stripped)
    if match:
        return match.group("path"), match.group("rest").split()
    parts = stripped.split()
    return parts[0], parts[1:]


def _list_lines(base_repo_dir: str) -> list[str]:
    result = runner.run_git(base_repo_dir, "worktree", "list")
    if not isinstance(result, GitOk):
        return []
    return [line for line in result.output.splitlines() if line.strip()]


def get_worktree_list(base_repo_dir: str) -> list[str]:
    """List worktree paths; empty on any failure."""
    return [_split_list_line(line)[0] for line in _list_lines(base_repo_dir)]


def find_worktree_for_branch(base_repo_dir: str, branch: str) -> Optional[str]:
    """Return the worktree path checked out on `branch`, or None.

    Matches the `[branch]` annotation or a trailing token exactly, so a
    prefix such as `feat` never matches `feat-a` and `team/feat` is compared
    as a whole.
    """
    annotation = f"[{branch}]"
    for line in _list_lines(base_repo_dir):
        path, tokens = _split_list_line(line)
        if annotation in tokens or (tokens and tokens[-1] == branch):
            return path
    return None


def _is_linked_worktree(path: str) -> bool:
    return os.path.isdir(path) and read_worktree_link(path) is not None


def find_worktree_for_bare_repo(bare_repo_dir: str) -> Optional[str]:
    """Pick a worktree to work in for a bare repository.

    Candidates are worktrees directly inside the bare repo that still exist on
    disk with a valid `.git` link file. Prefers `main`, then `master`, else the
    first candidate listed.
    """
    bare_root = os.path.realpath(bare_repo_dir)
    candidates: list[str] = []
    for worktree_path in get_worktree_list(bare_repo_dir):
        if os.path.dirname(os.path.realpath(worktree_path)) != bare_root:
            continue
        if not _is_linked_worktree(worktree_path):
            logger.debug("Ignoring stale worktree entry %s", worktree_path)
            continue
        candidates.append(worktree_path)

    if not candidates:
        return None
    for preferred in BARE_WORKTREE_PREFERENCES:
        for candidate in candidates:
            if os.path.basename(candidate.rstrip(os.sep)) == preferred:
                return candidate
    return candidates[0]
