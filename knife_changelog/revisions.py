"""Reconcile nominal cookbook versions with real git revisions.

Supermarket versions and git tags do not always agree on formatting: one
repository tags "v1.2.0", another "1.2.0", a monorepo "users-1.2.0", and
some (the java cookbook being the classic case) tag "1.2" for a release
published as "1.2.0". RevisionReconciler probes a clone for each plausible
spelling and returns the first one that exists.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from .errors import UnresolvableRevisionError
from .versions import VersionTag

logger = logging.getLogger(__name__)


class RevisionProbe(Protocol):
    """The part of a repository the reconciler needs."""

    def revision_exists(self, revision: str) -> bool: ...


def tag_prefix(tags: Iterable[str]) -> str:
    """Detect the tagging convention of a repository.

    Looks at the highest tag by version and returns "v" when it starts
    with a "v", otherwise "". Repositories without tags return "".
    """
    highest = max((VersionTag(t) for t in tags), default=None)
    if highest is not None and highest.name.startswith("v"):
        return "v"
    return ""


def candidate_revisions(
    nominal: str,
    *,
    cookbook: str | None = None,
    strip_suffix: bool = False,
    prefix: str = "",
) -> list[str]:
    """List the revision spellings to probe, most likely first.

    Args:
        nominal: Version or revision as recorded in the lockfile.
        cookbook: When set, also try "<cookbook>-<rev>" (monorepo tags).
        strip_suffix: When set and nominal ends in ".0", also try the
            spellings without that suffix as a last resort.
        prefix: Detected tag convention; "v" puts v-prefixed forms first.

    Example:
        >>> candidate_revisions("1.2.0")
        ['1.2.0', 'v1.2.0']
    """
    base = [nominal, f"v{nominal}"]
    if prefix == "v":
        base.reverse()
    if cookbook:
        base += [f"{cookbook}-{rev}" for rev in base]

    candidates = list(base)
    if strip_suffix and nominal.endswith(".0"):
        candidates += [rev[: -len(".0")] for rev in base]

    # Preserve order, drop duplicates
    return list(dict.fromkeys(candidates))


class RevisionReconciler:
    """Find which spelling of a revision exists in a cloned repository."""

    def __init__(self, repo: RevisionProbe) -> None:
        self.repo = repo

    def resolve(
        self,
        nominal: str,
        *,
        cookbook: str | None = None,
        cookbook_tags: bool = False,
        strip_suffix: bool = False,
        prefix: str = "",
    ) -> str:
        """Return the first existing candidate for nominal.

        Existence is checked against the clone itself, so commit SHAs and
        branch names work as well as tags. The cookbook name always appears
        in the error message but only feeds candidates when cookbook_tags
        is set.

        Raises:
            UnresolvableRevisionError: If no candidate exists.
        """
        candidates = candidate_revisions(
            nominal,
            cookbook=cookbook if cookbook_tags else None,
            strip_suffix=strip_suffix,
            prefix=prefix,
        )
        for candidate in candidates:
            if self.repo.revision_exists(candidate):
                if candidate != nominal:
                    logger.debug("Resolved %s to %s", nominal, candidate)
                return candidate
        raise UnresolvableRevisionError(cookbook, nominal, candidates)
