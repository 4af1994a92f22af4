"""Options controlling changelog generation.

Options can come from a `.knife-changelog.toml` file (top-level keys or a
[knife-changelog] table) and from command-line flags; flags win. The file
is read with tomlkit, the same parser used for every TOML file we touch.

Example .knife-changelog.toml:

    markdown = true
    linkify = true
    sources = ["https://supermarket.chef.io", "https://supermarket.internal"]
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigurationError
from .registry import DEFAULT_SOURCES

CONFIG_FILENAME = ".knife-changelog.toml"
CONFIG_TABLE = "knife-changelog"


class ChangelogConfig(BaseModel):
    """Every option the changelog engine and workflows understand.

    Attributes:
        linkify: Rewrite commit ids in git history as links.
        markdown: Prefix history lines with bullets; bold placeholders.
        ignore_changelog_file: Always use git history, never CHANGELOG diffs.
        allow_update_all: An empty cookbook list means "all cookbooks".
        submodules: Host-repo submodules to report after the cookbooks.
        prevent_downgrade: Policyfile mode: fail if any cookbook goes down.
        with_dependencies: Policyfile mode: report every updated cookbook,
            not only the requested ones.
        fail_fast: Abort on the first cookbook that fails. When False the
            error is reported in that cookbook's section instead.
        sources: Supermarket URLs used for registry cookbooks whose lock or
            Berksfile declares none.
        verify_ssl: Verify TLS certificates of Supermarket endpoints.
    """

    model_config = ConfigDict(extra="forbid")

    linkify: bool = False
    markdown: bool = False
    ignore_changelog_file: bool = False
    allow_update_all: bool = False
    submodules: list[str] = Field(default_factory=list)
    prevent_downgrade: bool = False
    with_dependencies: bool = False
    fail_fast: bool = True
    sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES))
    verify_ssl: bool = True

    @field_validator("submodules", mode="before")
    @classmethod
    def _split_submodules(cls, value: Any) -> Any:
        """Accept "a,b" as well as ["a", "b"]."""
        if value is None:
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value

    def merged(self, overrides: Mapping[str, Any]) -> ChangelogConfig:
        """Return a copy with every non-None override applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return _validate(data, "command-line options")


def load_config(path: Path | None = None) -> ChangelogConfig:
    """Load options from a TOML file.

    Args:
        path: File to read. When omitted, `.knife-changelog.toml` in the
            current directory is used if it exists.

    Raises:
        ConfigurationError: If an explicit path is missing or the file is
            not valid TOML or holds unknown/invalid options.
    """
    if path is None:
        path = Path.cwd() / CONFIG_FILENAME
        if not path.exists():
            return ChangelogConfig()
    elif not path.exists():
        raise ConfigurationError(f"Config file {path} does not exist")

    try:
        doc = tomlkit.parse(path.read_text()).unwrap()
    except TOMLKitError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc

    # Options may live at the top level or under [knife-changelog]
    table = doc.get(CONFIG_TABLE, doc)
    return _validate(table, str(path))


def _validate(data: Mapping[str, Any], origin: str) -> ChangelogConfig:
    try:
        return ChangelogConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid options in {origin}: {exc}") from exc
