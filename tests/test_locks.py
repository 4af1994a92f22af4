"""Tests for knife_changelog.locks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, call, patch

import pytest

from conftest import git_lock, policy_lock, supermarket_lock
from knife_changelog.errors import CommandFailedError, LockfileError, ResolutionError
from knife_changelog.locks import (
    BerksfileLock,
    BerksfileLockData,
    EmptyDependencySet,
    PolicyfileLock,
    parse_berksfile_lock,
    parse_berksfile_sources,
    read_policyfile_lock,
    versions,
)
from knife_changelog.models import LocationKind


class TestParseBerksfileLock:
    """Tests for parse_berksfile_lock()."""

    def test_graph_versions(self, berks_lock: BerksfileLockData) -> None:
        assert berks_lock.graph == {
            "gitted": "0.3.0",
            "mycookbook": "0.1.0",
            "outdated1": "1.0.0",
            "second_out_of_date": "1.0.0",
            "transitive": "2.0.0",
            "uptodate": "1.0.0",
        }

    def test_dependency_options(self, berks_lock: BerksfileLockData) -> None:
        assert berks_lock.dependencies["outdated1"] == {}
        assert berks_lock.dependencies["mycookbook"] == {"path": ".", "metadata": "true"}
        assert berks_lock.dependencies["gitted"] == {
            "git": "https://github.com/acme/gitted.git",
            "revision": "1111111111111111111111111111111111111111",
            "branch": "main",
        }

    def test_transitive_constraints_are_not_options(self, berks_lock: BerksfileLockData) -> None:
        assert "transitive" not in berks_lock.dependencies
        assert "outdated1" not in berks_lock.dependencies["mycookbook"]

    def test_empty_lock(self) -> None:
        with pytest.raises(LockfileError):
            parse_berksfile_lock("DEPENDENCIES\n  users\n")


class TestParseBerksfileSources:
    """Tests for parse_berksfile_sources()."""

    def test_both_quote_styles(self) -> None:
        text = "source \"https://a.example\"\nsource 'https://b.example'\nmetadata\n"

        assert parse_berksfile_sources(text) == ["https://a.example", "https://b.example"]

    def test_no_sources(self) -> None:
        assert parse_berksfile_sources("metadata\n") == []


class TestBerksfileLockUpstream:
    """Tests for BerksfileLock without an updated lock."""

    @pytest.fixture
    def lock(self, berks_lock: BerksfileLockData) -> BerksfileLock:
        return BerksfileLock(berks_lock)

    def test_tracks_upstream(self, lock: BerksfileLock) -> None:
        assert lock.tracks_upstream

    def test_all_cookbooks_in_graph_order(self, lock: BerksfileLock) -> None:
        assert lock.all_cookbooks() == [
            "gitted",
            "mycookbook",
            "outdated1",
            "second_out_of_date",
            "transitive",
            "uptodate",
        ]

    def test_location_kinds(self, lock: BerksfileLock) -> None:
        kinds = {name: lock.cookbook(name).location_kind for name in lock.all_cookbooks()}

        assert kinds == {
            "gitted": LocationKind.GIT,
            "mycookbook": LocationKind.PATH,
            "outdated1": LocationKind.REGISTRY,
            "second_out_of_date": LocationKind.REGISTRY,
            "transitive": LocationKind.REGISTRY,
            "uptodate": LocationKind.REGISTRY,
        }

    def test_registry_target_is_master(self, lock: BerksfileLock) -> None:
        ref = lock.cookbook("outdated1")

        assert ref.current_version == "1.0.0"
        assert ref.target_version == "master"

    def test_path_is_unchanged(self, lock: BerksfileLock) -> None:
        assert lock.cookbook("mycookbook").is_unchanged

    def test_git_location_tracks_branch(self, lock: BerksfileLock) -> None:
        location = lock.git_location("gitted")

        assert location.uri == "https://github.com/acme/gitted.git"
        assert location.revision == "1111111111111111111111111111111111111111"
        assert location.rev_parse == "main"

    def test_git_location_of_registry_cookbook(self, lock: BerksfileLock) -> None:
        with pytest.raises(ResolutionError):
            lock.git_location("outdated1")

    def test_unknown_cookbook(self, lock: BerksfileLock) -> None:
        assert lock.cookbook("nope") is None

    def test_no_declared_sources(self, lock: BerksfileLock) -> None:
        assert lock.registry_sources("outdated1") == []


class TestBerksfileLockUpdated:
    """Tests for BerksfileLock compared with an updated lock."""

    @pytest.fixture
    def lock(
        self, berks_lock: BerksfileLockData, updated_berks_lock: BerksfileLockData
    ) -> BerksfileLock:
        return BerksfileLock(berks_lock, updated_berks_lock)

    def test_pins_targets(self, lock: BerksfileLock) -> None:
        assert not lock.tracks_upstream
        ref = lock.cookbook("outdated1")
        assert (ref.current_version, ref.target_version) == ("1.0.0", "1.1.0")

    def test_new_cookbooks_come_last(self, lock: BerksfileLock) -> None:
        assert lock.all_cookbooks()[-1] == "brand_new"
        ref = lock.cookbook("brand_new")
        assert ref.is_new
        assert ref.target_version == "0.1.0"

    def test_unchanged(self, lock: BerksfileLock) -> None:
        assert lock.cookbook("uptodate").is_unchanged
        assert lock.cookbook("transitive").is_unchanged

    def test_git_versions_are_revisions(self, lock: BerksfileLock) -> None:
        ref = lock.cookbook("gitted")
        assert ref.current_version == "1" * 40
        assert ref.target_version == "2" * 40

        location = lock.git_location("gitted")
        assert location.revision == "1" * 40
        assert location.rev_parse == "2" * 40

    def test_removed_cookbook_has_no_target(self, berks_lock: BerksfileLockData) -> None:
        updated = parse_berksfile_lock("GRAPH\n  outdated1 (1.1.0)\n")

        lock = BerksfileLock(berks_lock, updated)

        assert lock.cookbook("uptodate").target_version is None


class TestBerksfileLockFromFiles:
    """Tests for BerksfileLock.from_files()."""

    def test_reads_sources_next_to_lock(self, berks_dir: Path) -> None:
        lock = BerksfileLock.from_files(berks_dir / "Berksfile.lock")

        assert lock.registry_sources("outdated1") == [
            "https://mysupermarket.io",
            "https://mysupermarket2.io",
        ]

    def test_updated_lockfile(self, berks_dir: Path) -> None:
        lock = BerksfileLock.from_files(
            berks_dir / "Berksfile.lock", berks_dir / "Berksfile.lock.updated"
        )

        assert lock.cookbook("second_out_of_date").target_version == "1.2.0"

    def test_without_berksfile(self, berks_dir: Path) -> None:
        (berks_dir / "Berksfile").unlink()

        lock = BerksfileLock.from_files(berks_dir / "Berksfile.lock")

        assert lock.registry_sources("outdated1") == []

    @pytest.mark.parametrize("missing", ["lockfile", "updated"])
    def test_missing_files(self, berks_dir: Path, missing: str) -> None:
        lockfile = berks_dir / "Berksfile.lock"
        updated = berks_dir / "nope.lock"
        if missing == "lockfile":
            lockfile, updated = berks_dir / "nope.lock", None

        with pytest.raises(LockfileError, match="does not exist"):
            BerksfileLock.from_files(lockfile, updated)


class TestReadPolicyfileLock:
    """Tests for read_policyfile_lock()."""

    def test_reads_lock(self, policy_dir: Path, current_policy_lock: dict[str, Any]) -> None:
        assert read_policyfile_lock(policy_dir) == current_policy_lock

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(LockfileError, match="does not exist"):
            read_policyfile_lock(tmp_path)

    @pytest.mark.parametrize("content", ["", "{}"])
    def test_empty(self, tmp_path: Path, content: str) -> None:
        (tmp_path / "Policyfile.lock.json").write_text(content)

        with pytest.raises(LockfileError, match="empty"):
            read_policyfile_lock(tmp_path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "Policyfile.lock.json").write_text("{not json")

        with pytest.raises(LockfileError, match="Invalid JSON"):
            read_policyfile_lock(tmp_path)


class TestVersions:
    """Tests for versions()."""

    def test_current(self, current_policy_lock: dict[str, Any]) -> None:
        assert versions(current_policy_lock["cookbook_locks"], "current") == {
            "sudo": {"current_version": "3.5.0"},
            "users": {"current_version": "4.0.0"},
        }

    def test_target(self, target_policy_lock: dict[str, Any]) -> None:
        assert versions(target_policy_lock["cookbook_locks"], "target")["users"] == {
            "target_version": "5.3.1"
        }

    def test_git_cookbooks_use_revision(self) -> None:
        locks = {"gitted": git_lock("gitted", "0.4.0", "abc1234def")}

        assert versions(locks, "current") == {"gitted": {"current_version": "abc1234def"}}

    def test_bad_kind(self, current_policy_lock: dict[str, Any]) -> None:
        with pytest.raises(ValueError, match="current"):
            versions(current_policy_lock["cookbook_locks"], "previous")

    @pytest.mark.parametrize("locks", [None, {}])
    def test_empty_locks(self, locks: dict[str, Any] | None) -> None:
        with pytest.raises(LockfileError):
            versions(locks, "current")


class TestPolicyfileLock:
    """Tests for PolicyfileLock."""

    def test_pairs_versions(
        self, current_policy_lock: dict[str, Any], target_policy_lock: dict[str, Any]
    ) -> None:
        lock = PolicyfileLock(current_policy_lock, target_policy_lock)

        users = lock.cookbook("users")
        assert users.location_kind is LocationKind.REGISTRY
        assert (users.current_version, users.target_version) == ("4.0.0", "5.3.1")
        assert lock.cookbook("sudo").is_unchanged
        assert not lock.tracks_upstream

    def test_added_and_removed_cookbooks(self) -> None:
        current = policy_lock({"old": supermarket_lock("old", "1.0.0")})
        target = policy_lock({"fresh": supermarket_lock("fresh", "0.1.0")})

        lock = PolicyfileLock(current, target)

        assert lock.all_cookbooks() == ["old", "fresh"]
        assert lock.cookbook("old").target_version is None
        assert lock.cookbook("fresh").is_new

    def test_registry_sources_from_artifactserver(self) -> None:
        current = policy_lock(
            {"users": supermarket_lock("users", "4.0.0", host="https://supermarket.internal")}
        )

        lock = PolicyfileLock(current)

        assert lock.registry_sources("users") == ["https://supermarket.internal"]

    def test_registry_sources_from_supermarket_key(self) -> None:
        current = policy_lock(
            {"users": {"version": "4.0.0", "source_options": {"supermarket": "https://sm.example/"}}}
        )

        assert PolicyfileLock(current).registry_sources("users") == ["https://sm.example"]

    def test_git_location(self) -> None:
        current = policy_lock({"gitted": git_lock("gitted", "0.3.0", "1" * 40)})
        target = policy_lock({"gitted": git_lock("gitted", "0.4.0", "2" * 40)})

        location = PolicyfileLock(current, target).git_location("gitted")

        assert location.uri == "https://github.com/chef-cookbooks/gitted.git"
        assert location.revision == "1" * 40
        assert location.rev_parse == "2" * 40

    def test_path_and_unknown_kinds(self) -> None:
        current = policy_lock(
            {
                "local": {"version": "1.0.0", "source_options": {"path": "../local"}},
                "odd": {"version": "1.0.0", "source_options": {"chef_server": "https://x"}},
            }
        )

        lock = PolicyfileLock(current)

        assert lock.cookbook("local").location_kind is LocationKind.PATH
        assert lock.cookbook("odd").location_kind is LocationKind.UNKNOWN


class TestPolicyfileLockUpdate:
    """Tests for PolicyfileLock.update()."""

    @patch("knife_changelog.locks.run")
    def test_returns_updated_lock_and_restores_original(
        self,
        mock_run: MagicMock,
        policy_dir: Path,
        current_policy_lock: dict[str, Any],
        target_policy_lock: dict[str, Any],
    ) -> None:
        lock_path = policy_dir / "Policyfile.lock.json"
        original = lock_path.read_text()

        def chef(*args: str, cwd: Path) -> str:
            if args[1] == "update":
                lock_path.write_text(json.dumps(target_policy_lock))
            return ""

        mock_run.side_effect = chef
        policyfile = policy_dir / "Policyfile.rb"

        result = PolicyfileLock(current_policy_lock, policyfile=policyfile).update(["users"])

        assert result == target_policy_lock
        assert lock_path.read_text() == original
        assert mock_run.call_args_list == [
            call("chef", "install", str(policyfile), cwd=policy_dir),
            call("chef", "update", str(policyfile), "users", cwd=policy_dir),
        ]

    @patch("knife_changelog.locks.run")
    def test_restores_original_when_chef_fails(
        self, mock_run: MagicMock, policy_dir: Path, current_policy_lock: dict[str, Any]
    ) -> None:
        lock_path = policy_dir / "Policyfile.lock.json"
        original = lock_path.read_text()

        def chef(*args: str, cwd: Path) -> str:
            if args[1] == "install":
                return ""
            lock_path.write_text("{broken")
            raise CommandFailedError(list(args), 1, "resolution failed")

        mock_run.side_effect = chef

        with pytest.raises(CommandFailedError):
            PolicyfileLock(current_policy_lock, policyfile=policy_dir / "Policyfile.rb").update([])

        assert lock_path.read_text() == original

    @patch("knife_changelog.locks.run")
    def test_install_failure_stops_before_update(
        self, mock_run: MagicMock, policy_dir: Path, current_policy_lock: dict[str, Any]
    ) -> None:
        lock_path = policy_dir / "Policyfile.lock.json"
        original = lock_path.read_text()
        policyfile = policy_dir / "Policyfile.rb"
        mock_run.side_effect = CommandFailedError(
            ["chef", "install", str(policyfile)], 1, "Policyfile.rb not found"
        )

        with pytest.raises(CommandFailedError, match="not found"):
            PolicyfileLock(current_policy_lock, policyfile=policyfile).update(["users"])

        mock_run.assert_called_once_with("chef", "install", str(policyfile), cwd=policy_dir)
        assert lock_path.read_text() == original

    def test_requires_policyfile(self, current_policy_lock: dict[str, Any]) -> None:
        with pytest.raises(LockfileError):
            PolicyfileLock(current_policy_lock).update([])


class TestEmptyDependencySet:
    """Tests for EmptyDependencySet."""

    def test_has_no_cookbooks(self) -> None:
        deps = EmptyDependencySet()

        assert deps.all_cookbooks() == []
        assert deps.cookbook("users") is None
        with pytest.raises(ResolutionError):
            deps.git_location("users")
