"""Changelog engine: from a dependency set to formatted changelog text.

For every requested cookbook the engine:
1. Looks the cookbook up in the dependency set (missing → placeholder,
   unchanged → nothing)
2. Dispatches on its location kind to find a git remote and a revision
   range (registry cookbooks go through the Supermarket API first)
3. Clones the remote into a scratch directory and reconciles the
   revisions with what actually exists there
4. Builds the body from the CHANGELOG file diff, falling back to the
   commit history between the two revisions
5. Renders the result

Submodules of the host repository go through steps 3-5 after the cookbooks.
All clones are removed when the run ends, however it ends.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

from .config import ChangelogConfig
from .errors import ChangelogError, UnsupportedLocationError
from .formatter import (
    bulletize,
    changelog_from_word_diff,
    clean,
    find_changelog_file,
    https_url,
    linkify,
    new_cookbook_placeholder,
    render,
)
from .git import GitRepository, SourceControl, cookbook_path, submodule_location
from .locks import LockedDependencySet
from .models import ChangelogEntry, CookbookRef, GitLocation, LocationKind
from .registry import PackageRegistry, SupermarketRegistry, to_git_url
from .revisions import RevisionReconciler, tag_prefix
from .workspace import ScratchWorkspace

logger = logging.getLogger(__name__)

ScmFactory = Callable[[str, Path], SourceControl]
SubmoduleLocator = Callable[..., GitLocation]


class ChangelogEngine:
    """Generate changelogs for the cookbooks of one dependency set.

    Args:
        dependencies: Where cookbook versions and locations come from.
        config: Output and behaviour options.
        registry: Supermarket client; created on first use when omitted.
        scm_factory: Builds a SourceControl for (uri, scratch_dir).
        workspace_factory: Builds the run-scoped scratch workspace.
        host_repo: Repository whose submodules are reported.
        submodule_locator: Resolves a submodule name to a GitLocation.
    """

    def __init__(
        self,
        dependencies: LockedDependencySet,
        config: ChangelogConfig | None = None,
        registry: PackageRegistry | None = None,
        scm_factory: ScmFactory = GitRepository,
        workspace_factory: Callable[[], ScratchWorkspace] = ScratchWorkspace,
        host_repo: str | Path = ".",
        submodule_locator: SubmoduleLocator = submodule_location,
    ) -> None:
        self.dependencies = dependencies
        self.config = config or ChangelogConfig()
        self.registry = registry
        self.scm_factory = scm_factory
        self.workspace_factory = workspace_factory
        self.host_repo = host_repo
        self.submodule_locator = submodule_locator
        self.workspace: ScratchWorkspace | None = None
        self._owned_registry: SupermarketRegistry | None = None

    def run(self, cookbooks: Sequence[str] = ()) -> str:
        """Generate the changelog for the given cookbooks, then submodules.

        An empty cookbook list means every cookbook when allow_update_all
        is set, and no cookbook otherwise.

        Returns:
            Rendered entries separated by blank lines, in request order.
        """
        if not cookbooks and self.config.allow_update_all:
            names = self.dependencies.all_cookbooks()
        else:
            names = list(cookbooks)

        entries: list[ChangelogEntry] = []
        with self._session():
            for name in names:
                logger.debug("Checking changelog for %s (cookbook)", name)
                entries.append(self._guarded(name, self.execute))
            for submodule in self.config.submodules:
                logger.debug("Checking changelog for %s (submodule)", submodule)
                entries.append(self._guarded(submodule, self.execute_submodule))

        return "\n".join(render(entry) for entry in entries if not entry.is_empty)

    def execute(self, name: str) -> ChangelogEntry:
        """Compute the changelog entry of one cookbook.

        Raises:
            ResolutionError: If the cookbook's history cannot be located.
            CommandFailedError: If a git command fails.
        """
        ref = self.dependencies.cookbook(name)
        if ref is None or ref.is_new:
            return self._new_cookbook(name, ref)
        if ref.is_unchanged or ref.target_version is None:
            logger.debug("%s is up to date", name)
            return ChangelogEntry(cookbook=name)

        kind = ref.location_kind
        if kind is LocationKind.REGISTRY:
            return self.handle_registry(ref)
        if kind is LocationKind.GIT:
            return self.handle_git(
                name,
                self.dependencies.git_location(name),
                pinned=not self.dependencies.tracks_upstream,
            )
        if kind is LocationKind.PATH:
            logger.debug("Path locations are always at the last version (%s)", name)
            return ChangelogEntry(cookbook=name)
        raise UnsupportedLocationError(name, kind.value)

    def execute_submodule(self, name: str) -> ChangelogEntry:
        """Compute the changelog entry of a host-repository submodule."""
        location = self.submodule_locator(name, self.host_repo)
        return self.handle_git(name, location)

    def handle_registry(self, ref: CookbookRef) -> ChangelogEntry:
        """Find the upstream repository of a Supermarket cookbook and diff it."""
        sources = self.dependencies.registry_sources(ref.name) or self.config.sources
        url = self._registry().source_url_for(sources, ref.name)
        uri = to_git_url(url, ref.name)

        pinned = not self.dependencies.tracks_upstream
        end = ref.target_version if pinned and ref.target_version else "master"
        location = GitLocation(uri=uri, revision=ref.current_version or "", rev_parse=end)
        return self.handle_git(ref.name, location, pinned=pinned)

    def handle_git(
        self, name: str, location: GitLocation, *, pinned: bool = False
    ) -> ChangelogEntry:
        """Clone a location and build the entry for its revision range.

        Args:
            name: Cookbook (or submodule) name.
            location: Remote and revision range.
            pinned: The end point is a version rather than a branch. It is
                then reconciled against real tags like the start point, with
                the repository's tag convention and monorepo-style
                "<cookbook>-<version>" tags taken into account.
        """
        with self._session() as workspace:
            repo = self.scm_factory(location.uri, workspace.acquire())
            repo.clone()

            reconciler = RevisionReconciler(repo)
            if pinned:
                prefix = tag_prefix(repo.tags())
                current = reconciler.resolve(
                    location.revision,
                    cookbook=name,
                    cookbook_tags=True,
                    strip_suffix=True,
                    prefix=prefix,
                )
                end = reconciler.resolve(
                    location.rev_parse,
                    cookbook=name,
                    cookbook_tags=True,
                    strip_suffix=True,
                    prefix=prefix,
                )
            else:
                current = reconciler.resolve(location.revision, cookbook=name)
                end = location.rev_parse

            lines = self._from_changelog_file(repo, current, end)
            if not lines:
                lines = self._from_git_history(name, repo, location, current, end)

        return ChangelogEntry(
            cookbook=name,
            version_range=f"{current}->{end}",
            lines=[line.rstrip() for line in lines],
        )

    def _from_changelog_file(
        self, repo: SourceControl, current: str, end: str
    ) -> list[str]:
        if self.config.ignore_changelog_file:
            return []
        filename = find_changelog_file(repo.files(end))
        if not filename:
            return []
        logger.info("Found changelog file: %s", filename)
        return changelog_from_word_diff(repo.diff(filename, current, end))

    def _from_git_history(
        self,
        name: str,
        repo: SourceControl,
        location: GitLocation,
        current: str,
        end: str,
    ) -> list[str]:
        # Multi-cookbook repositories: only keep commits touching this one
        path = cookbook_path(repo, name, end)
        lines = clean(repo.log(current, end, path))

        url = https_url(location.uri)
        if self.config.linkify and url:
            lines = linkify(url, lines)
        if self.config.markdown:
            lines = bulletize(lines)
        return lines

    def _new_cookbook(self, name: str, ref: CookbookRef | None) -> ChangelogEntry:
        version_range = f"->{ref.target_version}" if ref and ref.target_version else ""
        return ChangelogEntry(
            cookbook=name,
            version_range=version_range,
            lines=new_cookbook_placeholder(
                self.config.markdown, self.dependencies.missing_message
            ),
        )

    def _guarded(self, name: str, compute: Callable[[str], ChangelogEntry]) -> ChangelogEntry:
        try:
            return compute(name)
        except ChangelogError as exc:
            if self.config.fail_fast:
                raise
            logger.error("Changelog for %s failed: %s", name, exc)
            return ChangelogEntry(
                cookbook=name, lines=[f"Unable to generate changelog: {exc}"]
            )

    def _registry(self) -> PackageRegistry:
        if self.registry is None:
            self._owned_registry = SupermarketRegistry(verify=self.config.verify_ssl)
            self.registry = self._owned_registry
        return self.registry

    @contextlib.contextmanager
    def _session(self) -> Iterator[ScratchWorkspace]:
        """Reuse the active workspace, or own one for the duration."""
        if self.workspace is not None:
            yield self.workspace
            return
        with self.workspace_factory() as workspace:
            self.workspace = workspace
            try:
                yield workspace
            finally:
                self.workspace = None
                if self._owned_registry is not None:
                    self._owned_registry.close()
                    self._owned_registry = None
                    self.registry = None
