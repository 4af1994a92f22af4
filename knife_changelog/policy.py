"""Policyfile workflow: compare the committed lock with an updated one.

Unlike the Berkshelf flow, which compares locked cookbooks with upstream,
this flow asks chef for the lock an update *would* produce, keeps the
committed lock untouched, and reports the history between the two locked
versions of every cookbook that moved:

    current lock ─┐
                  ├─ version pairs → filter → downgrade guard → engine
    updated lock ─┘
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from .config import ChangelogConfig
from .engine import ChangelogEngine
from .locks import PolicyfileLock, read_policyfile_lock
from .models import CookbookRef
from .versions import check_downgrade

logger = logging.getLogger(__name__)


def reject_version_filter(ref: CookbookRef) -> bool:
    """True for cookbooks that should not appear in the changelog.

    Rejected: cookbooks whose version did not move, and cookbooks that
    are no longer used after the update.
    """
    return ref.current_version == ref.target_version or ref.target_version is None


class PolicyfileChangelog:
    """Changelog of the cookbooks a Policyfile update would move.

    Args:
        policyfile: Path to Policyfile.rb; its lock must sit next to it.
        cookbooks: Cookbooks to update. Empty means all of them.
        config: Options; with_dependencies and prevent_downgrade apply here.
        **engine_options: Passed through to ChangelogEngine (registry,
            scm_factory, ...).
    """

    def __init__(
        self,
        policyfile: Path,
        cookbooks: Sequence[str] = (),
        config: ChangelogConfig | None = None,
        **engine_options: Any,
    ) -> None:
        self.policyfile = Path(policyfile).expanduser().resolve()
        self.cookbooks = list(cookbooks)
        self.config = config or ChangelogConfig()
        self.engine_options = engine_options

    def read_current_lock(self) -> dict[str, Any]:
        return read_policyfile_lock(self.policyfile.parent)

    def updated_cookbooks(self, dependencies: PolicyfileLock) -> list[CookbookRef]:
        """Cookbooks whose locked version changes, in lockfile order."""
        refs = [dependencies.cookbook(name) for name in dependencies.all_cookbooks()]
        return [ref for ref in refs if ref is not None and not reject_version_filter(ref)]

    def generate(self, target_lock: Mapping[str, Any] | None = None) -> str:
        """Generate the changelog.

        Args:
            target_lock: Updated lock document. When omitted, it is computed
                with `chef update` and the committed lock is restored.

        Raises:
            DowngradeError: With prevent_downgrade, if any cookbook would
                move to a lower version. Raised before any history is fetched.
        """
        current = self.read_current_lock()
        if target_lock is None:
            target_lock = PolicyfileLock(current, policyfile=self.policyfile).update(
                self.cookbooks
            )
        dependencies = PolicyfileLock(current, target_lock, self.policyfile)

        updated = self.updated_cookbooks(dependencies)
        if self.config.prevent_downgrade:
            check_downgrade(
                {ref.name: (ref.current_version, ref.target_version) for ref in updated}
            )

        if self.config.with_dependencies or not self.cookbooks:
            selected = updated
        else:
            selected = [ref for ref in updated if ref.name in self.cookbooks]
        logger.debug("Updated cookbooks: %s", ", ".join(ref.name for ref in selected))

        return self.generate_from_versions(dependencies, [ref.name for ref in selected])

    def generate_from_versions(
        self, dependencies: PolicyfileLock, names: Sequence[str]
    ) -> str:
        """Run the engine over already-selected cookbooks."""
        config = self.config.model_copy(update={"allow_update_all": False})
        engine = ChangelogEngine(dependencies, config, **self.engine_options)
        return engine.run(names)
