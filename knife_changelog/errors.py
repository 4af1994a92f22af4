"""Exception hierarchy for knife-changelog.

Every error raised by the tool derives from ChangelogError so the CLI can
turn any of them into a clean exit. Resolution errors mean a cookbook's
upstream history could not be located; command errors mean git (or chef)
exited non-zero; configuration errors mean the inputs themselves are wrong.
"""

from __future__ import annotations


class ChangelogError(Exception):
    """Base class for all knife-changelog errors."""


# --- Resolution -------------------------------------------------------------


class ResolutionError(ChangelogError):
    """A cookbook's upstream source or revision could not be resolved."""


class NoSourceFoundError(ResolutionError):
    """No configured registry returned a usable source URL."""

    def __init__(self, cookbook: str, detail: str | None = None) -> None:
        self.cookbook = cookbook
        message = f"No source found in supermarket for cookbook '{cookbook}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnresolvableRevisionError(ResolutionError):
    """Neither the nominal revision nor any of its variants exist."""

    def __init__(self, cookbook: str | None, revision: str, tried: list[str]) -> None:
        self.cookbook = cookbook
        self.revision = revision
        self.tried = tried
        owner = f" ({cookbook})" if cookbook else ""
        super().__init__(
            f"{revision} is not an existing revision{owner}, not a tag/commit/branch name. "
            f"Tried: {', '.join(tried)}"
        )


class UnsupportedLocationError(ResolutionError):
    """The dependency set returned a location kind the engine cannot handle."""

    def __init__(self, cookbook: str, kind: str) -> None:
        self.cookbook = cookbook
        self.kind = kind
        super().__init__(f"Cannot handle {kind} location yet (cookbook: {cookbook})")


# --- Subprocesses -----------------------------------------------------------


class CommandFailedError(ChangelogError):
    """An external command exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str = "") -> None:
        self.command = args
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(args)}"
        if stderr.strip():
            message = f"{message}\n{stderr.strip()}"
        super().__init__(message)


class GitCommandFailedError(CommandFailedError):
    """A git invocation (log, diff, ls-tree, ...) failed."""


class CloneFailedError(GitCommandFailedError):
    """git clone failed."""


# --- Configuration ----------------------------------------------------------


class ConfigurationError(ChangelogError):
    """Inputs or options are invalid."""


class DowngradeError(ConfigurationError):
    """The update would move at least one cookbook to a lower version."""

    def __init__(self, downgrades: dict[str, tuple[str, str]]) -> None:
        self.downgrades = downgrades
        details = ", ".join(
            f"{name} ({current} -> {target})"
            for name, (current, target) in downgrades.items()
        )
        super().__init__(f"Trying to downgrade following cookbooks: {details}")


class LockfileError(ConfigurationError):
    """A lockfile is missing, empty, or malformed."""
