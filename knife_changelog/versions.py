"""Version parsing and comparison utilities.

Two flavours of version handling live here:

- Cookbook versions ("1.2", "1.2.3") are compared with semver, padding
  incomplete strings so "1.0" compares equal to "1.0.0". This backs the
  downgrade guard.
- Git tag names ("v1.2.3", "1.2.3", "release-candidate") are ordered with
  VersionTag, which tolerates a leading "v" and treats anything unparsable
  as 0.0.0 so one malformed tag cannot break sorting of the rest.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable, Mapping

import semver
from packaging.version import InvalidVersion, Version

from .errors import DowngradeError

# Chef cookbook version syntax: major.minor[.patch], digits only.
# See https://docs.chef.io/cookbook_versioning.html#syntax
VERSION_REGEX = re.compile(r"^[1-9]*[0-9](\.[0-9]+){1,2}$")

_ZERO = Version("0.0.0")


def parse_version(version_str: str) -> semver.Version:
    """Parse a Chef cookbook version into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3" → "1.2.3"

    Components are read as integers, so "1.02" equals "1.2.0".
    Only the first 3 components are used (major.minor.patch).
    Prerelease/build metadata is not supported.
    """
    parts = [int(part) for part in version_str.split(".")[:3]]
    while len(parts) < 3:
        parts.append(0)
    return semver.Version(*parts)


def is_semantic_version(version_str: str | None) -> bool:
    """Return True for plain numeric cookbook versions like "1.2" or "1.2.3".

    Git revisions (SHAs, branch names) return False.
    """
    return bool(version_str) and VERSION_REGEX.match(version_str) is not None


@functools.total_ordering
class VersionTag:
    """A git tag name that sorts by the version it encodes.

    A leading "v" is ignored. Names that are not valid versions compare as
    0.0.0 instead of raising.

    Example:
        >>> sorted(["1.0.0", "invalid", "v0.9.1"], key=VersionTag)
        ['invalid', 'v0.9.1', '1.0.0']
    """

    __slots__ = ("name", "version")

    def __init__(self, name: str) -> None:
        self.name = name
        self.version = _parse_tag(name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionTag):
            return NotImplemented
        return self.version == other.version

    def __lt__(self, other: VersionTag) -> bool:
        return self.version < other.version

    def __hash__(self) -> int:
        return hash(self.version)

    def __repr__(self) -> str:
        return f"VersionTag({self.name!r})"

    def __str__(self) -> str:
        return self.name


def _parse_tag(name: str) -> Version:
    try:
        return Version(re.sub(r"^v", "", name.strip()))
    except InvalidVersion:
        return _ZERO


def sort_by_version(tags: Iterable[str]) -> list[str]:
    """Sort tag names ascending by version.

    The sort is stable, so unparsable names keep their relative order at
    the front of the list.
    """
    return sorted(tags, key=VersionTag)


def find_downgrades(
    versions: Mapping[str, tuple[str | None, str | None]],
) -> dict[str, tuple[str, str]]:
    """Find cookbooks whose target version is lower than their current one.

    Only pairs where both sides are plain semantic versions are compared;
    git revisions and missing versions are ignored.

    Args:
        versions: Map of cookbook name → (current_version, target_version).

    Returns:
        Map of cookbook name → (current, target) for every downgrade.
    """
    downgrades: dict[str, tuple[str, str]] = {}
    for name, (current, target) in versions.items():
        if current is None or target is None:
            continue
        # Git revisions have no ordering; only numeric versions are checked
        if not (is_semantic_version(current) and is_semantic_version(target)):
            continue
        if parse_version(target) < parse_version(current):
            downgrades[name] = (current, target)
    return downgrades


def check_downgrade(versions: Mapping[str, tuple[str | None, str | None]]) -> None:
    """Raise DowngradeError if any cookbook would be downgraded."""
    downgrades = find_downgrades(versions)
    if downgrades:
        raise DowngradeError(downgrades)
