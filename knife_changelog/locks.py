"""Locked dependency sets: what changed, and where each cookbook comes from.

Two lockfile formats are supported behind one interface:

- Berksfile.lock (Berkshelf): a text file with a DEPENDENCIES section
  (direct dependencies and their location options) and a GRAPH section
  (every resolved cookbook and its version).
- Policyfile.lock.json (ChefDK/chef-cli): a JSON document whose
  cookbook_locks map each cookbook to a version and its source_options.

Each backend classifies every cookbook into a LocationKind once, when the
set is built. The changelog engine depends only on LockedDependencySet.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .errors import LockfileError, ResolutionError
from .formatter import MISSING_FROM_BERKSFILE, MISSING_FROM_POLICYFILE
from .models import CookbookRef, GitLocation, LocationKind
from .shell import run

logger = logging.getLogger(__name__)

POLICYFILE_LOCK = "Policyfile.lock.json"


class LockedDependencySet(Protocol):
    """A dependency snapshot as seen by the changelog engine.

    Attributes:
        tracks_upstream: True when target versions are unknown and history
            should run up to the upstream branch ("master"); False when the
            set pins explicit target versions.
        missing_message: Body used for cookbooks that were not locked.
    """

    tracks_upstream: bool
    missing_message: str

    def all_cookbooks(self) -> list[str]: ...

    def cookbook(self, name: str) -> CookbookRef | None: ...

    def git_location(self, name: str) -> GitLocation: ...

    def registry_sources(self, name: str) -> list[str]:
        """Supermarket URLs declared for name; empty means the configured defaults."""
        ...


# --- Berkshelf ----------------------------------------------------------------

# Options that qualify a location rather than define one
_BERKS_QUALIFIERS = {"revision", "branch", "tag", "ref", "rel", "metadata"}
_BERKS_SECTION = re.compile(r"^([A-Z]+)\s*$")
_BERKS_ENTRY = re.compile(r"^  (\S+)(?:\s+\((.+)\))?\s*$")
_BERKS_OPTION = re.compile(r"^    (\w+):\s*(.*?)\s*$")
_BERKS_SOURCE = re.compile(r"""^\s*source\s+['"]([^'"]+)['"]""", re.MULTILINE)


class BerksfileLockData(BaseModel):
    """Parsed contents of a Berksfile.lock.

    Attributes:
        dependencies: Direct dependency name → location options
            (e.g. {"git": "...", "revision": "...", "branch": "master"}).
        graph: Every resolved cookbook name → locked version, in file order.
    """

    dependencies: dict[str, dict[str, str]] = Field(default_factory=dict)
    graph: dict[str, str] = Field(default_factory=dict)


def parse_berksfile_lock(text: str) -> BerksfileLockData:
    """Parse Berksfile.lock text.

    Raises:
        LockfileError: If the text holds no GRAPH entries.
    """
    data = BerksfileLockData()
    section = None
    current: str | None = None

    for line in text.splitlines():
        if not line.strip():
            continue
        header = _BERKS_SECTION.match(line)
        if header:
            section = header.group(1)
            current = None
            continue

        entry = _BERKS_ENTRY.match(line)
        if entry:
            current = entry.group(1)
            if section == "DEPENDENCIES":
                data.dependencies[current] = {}
            elif section == "GRAPH":
                data.graph[current] = (entry.group(2) or "").strip()
            continue

        option = _BERKS_OPTION.match(line)
        # Indented lines under GRAPH are transitive constraints, not options
        if option and section == "DEPENDENCIES" and current is not None:
            data.dependencies[current][option.group(1)] = option.group(2)

    if not data.graph:
        raise LockfileError("Berksfile.lock has no GRAPH entries")
    return data


def parse_berksfile_sources(text: str) -> list[str]:
    """Return the source URLs declared in a Berksfile, in order."""
    return _BERKS_SOURCE.findall(text)


def _berks_kind(options: Mapping[str, str]) -> LocationKind:
    if "git" in options or "github" in options:
        return LocationKind.GIT
    if "path" in options:
        return LocationKind.PATH
    if set(options) - _BERKS_QUALIFIERS:
        return LocationKind.UNKNOWN
    # Berkshelf leaves the location empty for supermarket cookbooks
    return LocationKind.REGISTRY


def _berks_uri(options: Mapping[str, str]) -> str:
    if "git" in options:
        return options["git"]
    return f"https://github.com/{options['github']}.git"


def _berks_rev_parse(options: Mapping[str, str]) -> str:
    return options.get("ref") or options.get("branch") or options.get("tag") or "master"


class BerksfileLock:
    """LockedDependencySet backed by a Berksfile.lock.

    Args:
        lock: The currently committed lock.
        updated: Optional lock after "berks update". Without it, target
            versions are the upstream end points (the tracked branch for git
            cookbooks, master for registry cookbooks).
        sources: Supermarket URLs from the Berksfile.
    """

    missing_message = MISSING_FROM_BERKSFILE

    def __init__(
        self,
        lock: BerksfileLockData,
        updated: BerksfileLockData | None = None,
        sources: Sequence[str] | None = None,
    ) -> None:
        self.lock = lock
        self.updated = updated
        self.sources = list(sources or [])
        self.tracks_upstream = updated is None
        self._refs = {name: self._build_ref(name) for name in self._names()}

    @classmethod
    def from_files(
        cls,
        lockfile: Path,
        updated_lockfile: Path | None = None,
        berksfile: Path | None = None,
    ) -> BerksfileLock:
        """Load a Berksfile.lock, an optional updated lock and the Berksfile."""
        if not lockfile.exists():
            raise LockfileError(f"File {lockfile} does not exist")
        lock = parse_berksfile_lock(lockfile.read_text())
        updated = None
        if updated_lockfile is not None:
            if not updated_lockfile.exists():
                raise LockfileError(f"File {updated_lockfile} does not exist")
            updated = parse_berksfile_lock(updated_lockfile.read_text())

        if berksfile is None:
            berksfile = lockfile.with_name("Berksfile")
        sources = parse_berksfile_sources(berksfile.read_text()) if berksfile.exists() else []
        return cls(lock, updated, sources)

    def all_cookbooks(self) -> list[str]:
        return list(self._refs)

    def cookbook(self, name: str) -> CookbookRef | None:
        return self._refs.get(name)

    def git_location(self, name: str) -> GitLocation:
        ref = self._refs.get(name)
        if ref is None or ref.location_kind is not LocationKind.GIT:
            raise ResolutionError(f"{name} has not a git location")
        options = self._options(name)
        return GitLocation(
            uri=_berks_uri(options),
            revision=options.get("revision") or _berks_rev_parse(options),
            rev_parse=ref.target_version or _berks_rev_parse(options),
        )

    def registry_sources(self, name: str) -> list[str]:
        return list(self.sources)

    def _names(self) -> list[str]:
        names = list(self.lock.graph)
        if self.updated is not None:
            names += [n for n in self.updated.graph if n not in self.lock.graph]
        return names

    def _options(self, name: str) -> dict[str, str]:
        if name in self.lock.graph:
            return self.lock.dependencies.get(name, {})
        if self.updated is not None:
            return self.updated.dependencies.get(name, {})
        return {}

    def _build_ref(self, name: str) -> CookbookRef:
        options = self._options(name)
        kind = _berks_kind(options)

        current = None
        if name in self.lock.graph:
            current = self._version(self.lock, name, kind)

        if self.updated is None:
            if kind is LocationKind.GIT:
                target = _berks_rev_parse(options)
            elif kind is LocationKind.REGISTRY:
                target = "master"
            else:
                target = current
        elif name in self.updated.graph:
            target = self._version(self.updated, name, kind)
        else:
            target = None

        return CookbookRef(
            name=name, location_kind=kind, current_version=current, target_version=target
        )

    @staticmethod
    def _version(data: BerksfileLockData, name: str, kind: LocationKind) -> str:
        options = data.dependencies.get(name, {})
        if kind is LocationKind.GIT and options.get("revision"):
            return options["revision"]
        return data.graph[name]


# --- Policyfile ---------------------------------------------------------------

_ARTIFACT_SOURCE = re.compile(r"^(.+?)/api/v1/cookbooks/")


def read_policyfile_lock(directory: Path) -> dict[str, Any]:
    """Parse Policyfile.lock.json in a directory.

    Raises:
        LockfileError: If the file is missing, empty or not JSON.
    """
    lock = Path(directory) / POLICYFILE_LOCK
    if not lock.exists():
        raise LockfileError(f"File {lock} does not exist")
    try:
        content = json.loads(lock.read_text() or "{}")
    except json.JSONDecodeError as exc:
        raise LockfileError(f"Invalid JSON in {lock}: {exc}") from exc
    if not content:
        raise LockfileError(f"{POLICYFILE_LOCK} empty")
    return content


def versions(locks: Mapping[str, Any] | None, kind: str) -> dict[str, dict[str, str]]:
    """Extract current or target versions from cookbook_locks.

    Git-sourced cookbooks are identified by their locked revision, every
    other cookbook by its version.

    Example:
        versions(locks, "current") → {"users": {"current_version": "4.0.0"}}

    Raises:
        ValueError: If kind is neither "current" nor "target".
        LockfileError: If locks is empty or None.
    """
    if kind not in ("current", "target"):
        raise ValueError('Use "current" or "target" as type')
    if not locks:
        raise LockfileError("Cookbook locks empty or nil")
    return {name: {f"{kind}_version": _policy_version(data)} for name, data in locks.items()}


def _policy_version(data: Mapping[str, Any]) -> str:
    options = data.get("source_options") or {}
    if "git" in options:
        return options.get("revision") or data.get("version")
    return data.get("version")


def _policy_kind(data: Mapping[str, Any]) -> LocationKind:
    options = data.get("source_options") or {}
    if "git" in options:
        return LocationKind.GIT
    if "artifactserver" in options or "supermarket" in options:
        return LocationKind.REGISTRY
    if "path" in options:
        return LocationKind.PATH
    return LocationKind.UNKNOWN


class PolicyfileLock:
    """LockedDependencySet backed by Policyfile.lock.json snapshots.

    Args:
        current: The committed lock document.
        target: The lock document after an update. Without it, cookbooks
            are compared against upstream like the Berkshelf backend does.
        policyfile: Policyfile.rb the locks belong to; required by update().
    """

    missing_message = MISSING_FROM_POLICYFILE

    def __init__(
        self,
        current: Mapping[str, Any],
        target: Mapping[str, Any] | None = None,
        policyfile: Path | None = None,
    ) -> None:
        self.current_locks: dict[str, Any] = dict(current.get("cookbook_locks") or {})
        self.target_locks: dict[str, Any] | None = (
            dict(target.get("cookbook_locks") or {}) if target is not None else None
        )
        self.policyfile = policyfile
        self.tracks_upstream = target is None
        self._refs = {name: self._build_ref(name) for name in self._names()}

    @classmethod
    def from_policyfile(cls, policyfile: Path, target: Mapping[str, Any] | None = None) -> PolicyfileLock:
        """Load the lock that sits next to a Policyfile."""
        policyfile = policyfile.expanduser().resolve()
        return cls(read_policyfile_lock(policyfile.parent), target, policyfile)

    def all_cookbooks(self) -> list[str]:
        return list(self._refs)

    def cookbook(self, name: str) -> CookbookRef | None:
        return self._refs.get(name)

    def git_location(self, name: str) -> GitLocation:
        ref = self._refs.get(name)
        if ref is None or ref.location_kind is not LocationKind.GIT:
            raise ResolutionError(f"{name} has not a git location")
        options = self._lock(name).get("source_options") or {}
        return GitLocation(
            uri=options["git"],
            revision=ref.current_version or options.get("revision") or "master",
            rev_parse=ref.target_version or options.get("branch") or "master",
        )

    def registry_sources(self, name: str) -> list[str]:
        options = self._lock(name).get("source_options") or {}
        if options.get("supermarket"):
            return [options["supermarket"].rstrip("/")]
        match = _ARTIFACT_SOURCE.match(options.get("artifactserver") or "")
        if match:
            return [match.group(1)]
        return []

    def update(self, names: Sequence[str]) -> dict[str, Any]:
        """Compute the lock "chef update" would produce, without keeping it.

        The committed lock is backed up, `chef install` makes sure it matches
        the Policyfile, `chef update` rewrites it, the new content is read,
        and the original lock is restored.

        Returns:
            The updated lock document.

        Raises:
            LockfileError: If no Policyfile path is known.
            CommandFailedError: If chef install or chef update fails.
        """
        if self.policyfile is None:
            raise LockfileError("No Policyfile given; cannot update its lock")
        directory = self.policyfile.parent
        lock = directory / POLICYFILE_LOCK

        with tempfile.TemporaryDirectory(prefix="knife-changelog") as backup_dir:
            backup = Path(backup_dir) / POLICYFILE_LOCK
            shutil.copy2(lock, backup)
            logger.debug("Backed up %s to %s", lock, backup)
            try:
                run("chef", "install", str(self.policyfile), cwd=directory)
                run("chef", "update", str(self.policyfile), *names, cwd=directory)
                return read_policyfile_lock(directory)
            finally:
                shutil.copy2(backup, lock)
                logger.debug("Restored %s", lock)

    def _names(self) -> list[str]:
        names = list(self.current_locks)
        if self.target_locks is not None:
            names += [n for n in self.target_locks if n not in self.current_locks]
        return names

    def _lock(self, name: str) -> dict[str, Any]:
        if name in self.current_locks:
            return self.current_locks[name]
        if self.target_locks is not None and name in self.target_locks:
            return self.target_locks[name]
        return {}

    def _build_ref(self, name: str) -> CookbookRef:
        data = self._lock(name)
        kind = _policy_kind(data)
        current = _policy_version(self.current_locks[name]) if name in self.current_locks else None

        if self.target_locks is None:
            options = data.get("source_options") or {}
            if kind is LocationKind.GIT:
                target = options.get("branch") or "master"
            elif kind is LocationKind.REGISTRY:
                target = "master"
            else:
                target = current
        elif name in self.target_locks:
            target = _policy_version(self.target_locks[name])
        else:
            target = None

        return CookbookRef(
            name=name, location_kind=kind, current_version=current, target_version=target
        )


class EmptyDependencySet:
    """A dependency set with no cookbooks, for submodule-only runs."""

    tracks_upstream = True
    missing_message = MISSING_FROM_BERKSFILE

    def all_cookbooks(self) -> list[str]:
        return []

    def cookbook(self, name: str) -> CookbookRef | None:
        return None

    def git_location(self, name: str) -> GitLocation:
        raise ResolutionError(f"{name} has not a git location")

    def registry_sources(self, name: str) -> list[str]:
        return []
