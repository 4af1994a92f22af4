"""Shell and git utilities.

Provides simple wrappers around subprocess calls for running git and other
external commands. Unlike a release pipeline, nothing is streamed to the
terminal: stdout is reserved for the changelog itself, so output is captured
and failures are raised as exceptions carrying the command context.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import CommandFailedError, GitCommandFailedError

logger = logging.getLogger(__name__)


def git(
    *args: str,
    cwd: str | Path | None = None,
    check: bool = True,
    error: type[GitCommandFailedError] = GitCommandFailedError,
) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "log", "--no-merges").
        cwd: Directory to run git in (a bare clone, or the host repo).
        check: If True (default), raise on non-zero exit.
        error: Exception class raised on failure, so callers can tell a
               failed clone apart from a failed log.

    Returns:
        Stdout from the git command with trailing whitespace removed.

    Raises:
        GitCommandFailedError: If check is True and git exits non-zero.
    """
    cmd = ["git", *args]
    logger.debug("Running %s (cwd=%s)", " ".join(cmd), cwd or ".")
    result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    if check and result.returncode != 0:
        raise error(cmd, result.returncode, result.stderr)
    return result.stdout.rstrip()


def git_succeeds(*args: str, cwd: str | Path | None = None) -> bool:
    """Run a git command and only report whether it exited zero.

    Used for existence probes (e.g., "rev-list --quiet <rev>") where a
    failure is an answer, not an error.
    """
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True)
    return result.returncode == 0


def run(*args: str, cwd: str | Path | None = None) -> str:
    """Run an arbitrary command and return its stdout.

    Args:
        *args: Command and arguments (e.g., "chef", "update", "Policyfile.rb").
        cwd: Working directory for the command.

    Raises:
        CommandFailedError: If the command exits non-zero.
    """
    logger.debug("Running %s (cwd=%s)", " ".join(args), cwd or ".")
    result = subprocess.run(list(args), cwd=cwd, capture_output=True, text=True)
    if result.returncode != 0:
        raise CommandFailedError(list(args), result.returncode, result.stderr)
    return result.stdout
