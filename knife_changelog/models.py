"""Data models for knife-changelog.

These Pydantic models represent the values that flow between the
dependency sets, the changelog engine and the output formatter.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .versions import VersionTag


class LocationKind(str, Enum):
    """Where a locked cookbook comes from.

    Decided once by the dependency-set backend when it builds a CookbookRef,
    so the engine only ever dispatches on this tag.
    """

    REGISTRY = "registry"
    GIT = "git"
    PATH = "path"
    UNKNOWN = "unknown"


class CookbookRef(BaseModel):
    """A single cookbook as seen by a dependency set.

    Attributes:
        name: Cookbook name (identity).
        location_kind: Where the cookbook is fetched from.
        current_version: Locked version (or git revision) before the update.
            None when the cookbook is newly introduced.
        target_version: Version (or revision) after the update.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    location_kind: LocationKind = LocationKind.UNKNOWN
    current_version: str | None = None
    target_version: str | None = None

    @property
    def is_new(self) -> bool:
        return self.current_version is None

    @property
    def is_unchanged(self) -> bool:
        """True when both versions are known and identical."""
        return (
            self.current_version is not None
            and self.target_version is not None
            and self.current_version == self.target_version
        )


class GitLocation(BaseModel):
    """A git remote plus the revision range to inspect.

    Attributes:
        uri: Clonable git remote.
        revision: Starting point (the currently locked state).
        rev_parse: End point to diff toward, often a branch like "master".
    """

    model_config = ConfigDict(frozen=True)

    uri: str
    revision: str
    rev_parse: str = "master"

    @field_validator("uri", "revision")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class ChangelogEntry(BaseModel):
    """The changelog produced for one cookbook.

    An entry with no lines is suppressed entirely when rendering.
    """

    cookbook: str
    version_range: str = ""
    lines: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class CookbookMetadata(BaseModel):
    """Cookbook metadata as returned by a Supermarket API.

    Attributes:
        versions: Version URLs, e.g. "https://supermarket.chef.io/api/v1/cookbooks/users/versions/5.3.1".
        source_url: Declared source repository, if any.
        external_url: Fallback project URL, if any.
    """

    versions: list[str] = Field(default_factory=list)
    source_url: str | None = None
    external_url: str | None = None

    @property
    def highest_version(self) -> VersionTag:
        """Highest version published, parsed from the last URL segment."""
        tags = [VersionTag(url.rstrip("/").rsplit("/", 1)[-1]) for url in self.versions]
        return max(tags, default=VersionTag("0.0.0"))

    @property
    def url(self) -> str | None:
        """The declared source URL, falling back to the external URL."""
        return self.source_url or self.external_url or None
