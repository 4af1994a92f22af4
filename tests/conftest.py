"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from knife_changelog.locks import BerksfileLockData, parse_berksfile_lock

BERKSFILE_LOCK = """\
DEPENDENCIES
  outdated1
  second_out_of_date
  uptodate
  mycookbook
    path: .
    metadata: true
  gitted
    git: https://github.com/acme/gitted.git
    revision: 1111111111111111111111111111111111111111
    branch: main

GRAPH
  gitted (0.3.0)
  mycookbook (0.1.0)
    outdated1 (>= 0.0.0)
  outdated1 (1.0.0)
  second_out_of_date (1.0.0)
  transitive (2.0.0)
  uptodate (1.0.0)
"""

UPDATED_BERKSFILE_LOCK = """\
DEPENDENCIES
  outdated1
  second_out_of_date
  uptodate
  mycookbook
    path: .
    metadata: true
  gitted
    git: https://github.com/acme/gitted.git
    revision: 2222222222222222222222222222222222222222
    branch: main

GRAPH
  brand_new (0.1.0)
  gitted (0.4.0)
  mycookbook (0.1.0)
    outdated1 (>= 0.0.0)
  outdated1 (1.1.0)
  second_out_of_date (1.2.0)
  transitive (2.0.0)
  uptodate (1.0.0)
"""

BERKSFILE = """\
source "https://mysupermarket.io"
source 'https://mysupermarket2.io'

metadata
cookbook 'gitted', git: 'https://github.com/acme/gitted.git', branch: 'main'
"""


def policy_lock(cookbooks: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Build a Policyfile.lock.json document around cookbook_locks."""
    return {
        "revision_id": "abc",
        "name": "test_policy",
        "run_list": [f"recipe[{name}::default]" for name in cookbooks],
        "cookbook_locks": cookbooks,
    }


def supermarket_lock(name: str, version: str, host: str = "https://supermarket.chef.io") -> dict[str, Any]:
    return {
        "version": version,
        "identifier": f"{name}-{version}",
        "source_options": {
            "artifactserver": f"{host}/api/v1/cookbooks/{name}/versions/{version}/download",
            "version": version,
        },
    }


def git_lock(name: str, version: str, revision: str) -> dict[str, Any]:
    return {
        "version": version,
        "identifier": f"{name}-{revision[:7]}",
        "source_options": {
            "git": f"https://github.com/chef-cookbooks/{name}.git",
            "revision": revision,
            "branch": "main",
        },
    }


class FakeRepository:
    """In-memory stand-in for GitRepository."""

    def __init__(
        self,
        uri: str,
        scratch_dir: Path,
        *,
        log: Sequence[str] = (),
        files: Sequence[str] = (),
        diff: Sequence[str] = (),
        revisions: Sequence[str] | None = None,
        tags: Sequence[str] = (),
        contents: dict[str, str] | None = None,
    ) -> None:
        self.uri = uri
        self.scratch_dir = scratch_dir
        self.cloned = False
        self._log = list(log)
        self._files = list(files)
        self._diff = list(diff)
        self._revisions = None if revisions is None else set(revisions)
        self._tags = list(tags)
        self._contents = contents or {}
        self.log_calls: list[tuple[str, str, str | None]] = []
        self.diff_calls: list[tuple[str, str, str]] = []
        self.probed: list[str] = []

    def clone(self) -> Path:
        self.cloned = True
        return self.scratch_dir / "bare-clone"

    def files(self, revision: str) -> list[str]:
        return list(self._files)

    def diff(self, filename: str, current_rev: str, rev_parse: str) -> list[str]:
        self.diff_calls.append((filename, current_rev, rev_parse))
        return list(self._diff)

    def log(self, current_rev: str, rev_parse: str, path: str | None = None) -> list[str]:
        self.log_calls.append((current_rev, rev_parse, path))
        return list(self._log)

    def revision_exists(self, revision: str) -> bool:
        self.probed.append(revision)
        return self._revisions is None or revision in self._revisions

    def tags(self) -> list[str]:
        return list(self._tags)

    def show(self, revision: str, path: str) -> str:
        return self._contents[path]


class FakeScm:
    """scm_factory handing out FakeRepository objects keyed by repo name."""

    def __init__(self, repos: dict[str, dict[str, Any]] | None = None) -> None:
        self.repos = repos or {}
        self.created: list[FakeRepository] = []

    def __call__(self, uri: str, scratch_dir: Path) -> FakeRepository:
        name = uri.rstrip("/").rsplit("/", 1)[-1]
        if name.endswith(".git"):
            name = name[: -len(".git")]
        repo = FakeRepository(uri, scratch_dir, **self.repos.get(name, {}))
        self.created.append(repo)
        return repo

    @property
    def cloned_names(self) -> list[str]:
        return [repo.uri.rsplit("/", 1)[-1].replace(".git", "") for repo in self.created]


class FakeRegistry:
    """PackageRegistry pointing every cookbook at github.com/chef-cookbooks."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str]] = []

    def lookup(self, sources: Sequence[str], name: str) -> list[Any]:
        return []

    def source_url_for(self, sources: Sequence[str], name: str) -> str:
        self.calls.append((list(sources), name))
        return f"https://github.com/chef-cookbooks/{name}"


@pytest.fixture
def berks_lock() -> BerksfileLockData:
    return parse_berksfile_lock(BERKSFILE_LOCK)


@pytest.fixture
def updated_berks_lock() -> BerksfileLockData:
    return parse_berksfile_lock(UPDATED_BERKSFILE_LOCK)


@pytest.fixture
def berks_dir(tmp_path: Path) -> Path:
    """A directory holding Berksfile, Berksfile.lock and an updated lock."""
    (tmp_path / "Berksfile").write_text(BERKSFILE)
    (tmp_path / "Berksfile.lock").write_text(BERKSFILE_LOCK)
    (tmp_path / "Berksfile.lock.updated").write_text(UPDATED_BERKSFILE_LOCK)
    return tmp_path


@pytest.fixture
def current_policy_lock() -> dict[str, Any]:
    return policy_lock(
        {
            "sudo": supermarket_lock("sudo", "3.5.0"),
            "users": supermarket_lock("users", "4.0.0"),
        }
    )


@pytest.fixture
def target_policy_lock() -> dict[str, Any]:
    return policy_lock(
        {
            "sudo": supermarket_lock("sudo", "3.5.0"),
            "users": supermarket_lock("users", "5.3.1"),
        }
    )


@pytest.fixture
def policy_dir(tmp_path: Path, current_policy_lock: dict[str, Any]) -> Path:
    """A directory holding Policyfile.rb and its lock."""
    (tmp_path / "Policyfile.rb").write_text(
        "name 'test_policy'\n"
        "run_list ['recipe[users]', 'recipe[sudo]']\n"
        "default_source :supermarket, 'https://supermarket.chef.io'\n"
    )
    (tmp_path / "Policyfile.lock.json").write_text(json.dumps(current_policy_lock))
    return tmp_path
