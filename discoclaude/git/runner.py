"""Run git commands through GitPython and classify the outcome."""

from __future__ import annotations

import logging
import os

from git import Git
from git.exc import GitCommandNotFound

from discoclaude.git.types import GitInvocationError, GitOk, GitResult, GitToolError

logger = logging.getLogger(__name__)

# Never block on credential prompts; the bot has no terminal.
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


def run_git(cwd: str, *args: str) -> GitResult:
    """Run `git <args>` in `cwd`.

    Returns:
        GitOk on exit 0, GitToolError on non-zero exit, GitInvocationError when
        git could not be started
    """
    if not os.path.isdir(cwd):
        return GitInvocationError(cause=f"Working directory does not exist: {cwd}")

    executable = Git.GIT_PYTHON_GIT_EXECUTABLE or "git"
    try:
        status, stdout, stderr = Git(cwd).execute(
            [executable, *args],
            with_extended_output=True,
            with_exceptions=False,
            env=GIT_ENV,
        )
    except GitCommandNotFound as exc:
        return GitInvocationError(cause=str(exc))
    except OSError as exc:
        return GitInvocationError(cause=str(exc))

    if status != 0:
        logger.debug("git %s failed in %s (exit %s): %s", " ".join(args), cwd, status, stderr.strip()[:200])
        return GitToolError(returncode=int(status), stderr=str(stderr), stdout=str(stdout))
    return GitOk(output=str(stdout))
