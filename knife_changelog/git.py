"""Git access for changelog generation.

GitRepository wraps a single bare clone of one remote and exposes the few
read-only queries the changelog engine needs. The engine only depends on
the SourceControl protocol, so tests can substitute an in-memory fake.
"""

from __future__ import annotations

import logging
import posixpath
import re
from pathlib import Path
from typing import Protocol

from .errors import CloneFailedError, GitCommandFailedError, ResolutionError
from .models import GitLocation
from .shell import git, git_succeeds

logger = logging.getLogger(__name__)

CLONE_DIR_NAME = "bare-clone"

_METADATA_NAME = re.compile(r"""^\s*name\s+['"]([^'"]+)['"]""", re.MULTILINE)


class SourceControl(Protocol):
    """Read-only access to one cloned repository."""

    uri: str

    def clone(self) -> Path:
        """Clone the remote; must be called before any other method."""
        ...

    def files(self, revision: str) -> list[str]:
        """ls-tree lines for every file at revision."""
        ...

    def diff(self, filename: str, current_rev: str, rev_parse: str) -> list[str]:
        """Word-diff of one file between two revisions."""
        ...

    def log(
        self, current_rev: str, rev_parse: str, path: str | None = None
    ) -> list[str]:
        """One "<sha> <subject>" line per non-merge commit in the range."""
        ...

    def revision_exists(self, revision: str) -> bool: ...

    def tags(self) -> list[str]: ...

    def show(self, revision: str, path: str) -> str:
        """Contents of path at revision."""
        ...


class GitRepository:
    """A bare clone of a git remote inside a scratch directory.

    Args:
        uri: Remote to clone.
        scratch_dir: Empty directory owned by the caller; the clone is
            created inside it and removed along with it.
    """

    def __init__(self, uri: str, scratch_dir: Path) -> None:
        self.uri = uri
        self.scratch_dir = Path(scratch_dir)
        self.clone_dir: Path | None = None

    def clone(self) -> Path:
        """Bare-clone the remote (objects only, no working tree)."""
        logger.debug("Cloning %s in %s", self.uri, self.scratch_dir)
        git(
            "clone",
            "--bare",
            self.uri,
            CLONE_DIR_NAME,
            cwd=self.scratch_dir,
            error=CloneFailedError,
        )
        self.clone_dir = self.scratch_dir / CLONE_DIR_NAME
        return self.clone_dir

    def files(self, revision: str) -> list[str]:
        return self._git("ls-tree", "-r", revision).splitlines()

    def diff(self, filename: str, current_rev: str, rev_parse: str) -> list[str]:
        out = self._git(
            "diff", f"{current_rev}..{rev_parse}", "--word-diff", "--", filename
        )
        return out.splitlines()

    def log(
        self, current_rev: str, rev_parse: str, path: str | None = None
    ) -> list[str]:
        args = [
            "log",
            "--no-merges",
            "--abbrev-commit",
            "--pretty=oneline",
            f"{current_rev}..{rev_parse}",
        ]
        if path:
            args += ["--", path]
        return self._git(*args).splitlines()

    def revision_exists(self, revision: str) -> bool:
        logger.debug("Testing existence of %s", revision)
        return git_succeeds("rev-list", "--quiet", "-n", "1", revision, cwd=self._cwd())

    def tags(self) -> list[str]:
        return self._git("tag", "--list").splitlines()

    def show(self, revision: str, path: str) -> str:
        return self._git("show", f"{revision}:{path}")

    def _git(self, *args: str) -> str:
        return git(*args, cwd=self._cwd())

    def _cwd(self) -> Path:
        if self.clone_dir is None:
            raise GitCommandFailedError(["git", "clone", self.uri], -1, "repository not cloned yet")
        return self.clone_dir


def ls_tree_path(line: str) -> str:
    """Return the path from an ls-tree line ("<mode> <type> <sha>\\t<path>")."""
    return line.split("\t", 1)[-1].strip()


def cookbook_path(repo: SourceControl, cookbook: str, revision: str) -> str | None:
    """Locate a cookbook inside a repository that may hold several.

    Looks at metadata.rb at the root and one directory down, and returns the
    directory whose metadata declares the given name. Returns None when the
    cookbook sits at the repository root or no metadata matches, meaning the
    whole history applies.
    """
    candidates = [
        path
        for path in (ls_tree_path(line) for line in repo.files(revision))
        if path == "metadata.rb" or re.fullmatch(r"[^/]+/metadata\.rb", path)
    ]
    # Root metadata first: single-cookbook repos need no path filter
    candidates.sort(key=lambda p: p.count("/"))
    for path in candidates:
        match = _METADATA_NAME.search(repo.show(revision, path))
        if match and match.group(1) == cookbook:
            directory = posixpath.dirname(path)
            return directory or None
    return None


def submodule_location(name: str, host_repo: str | Path = ".") -> GitLocation:
    """Build a GitLocation for a submodule of the host repository.

    The remote comes from the submodule's configured URL (falling back to
    .gitmodules for uninitialised submodules), the start revision from the
    commit currently recorded for it, and the end point is master.

    Raises:
        ResolutionError: If the host repository has no such submodule.
        GitCommandFailedError: If git submodule status fails.
    """
    key = f"submodule.{name}.url="
    url = None
    for line in git("config", "--list", cwd=host_repo).splitlines():
        if line.startswith(key):
            url = line.split("=", 1)[1].strip()
            break
    if not url:
        url = git(
            "config", "--file", ".gitmodules", "--get", f"submodule.{name}.url",
            cwd=host_repo,
            check=False,
        ).strip()
    if not url:
        raise ResolutionError(f"No submodule named {name} in {host_repo}")

    status = git("submodule", "status", name, cwd=host_repo).strip()
    if not status:
        raise ResolutionError(f"No submodule named {name} in {host_repo}")
    # Status lines look like "+<sha> path (describe)"; the flag is optional
    revision = status.split()[0].lstrip("+-U")
    return GitLocation(uri=url, revision=revision, rev_parse="master")
