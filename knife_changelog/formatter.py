"""Changelog rendering and line rewriting.

Turns raw git output (log lines, word-diffs of a CHANGELOG file) into the
lines of a ChangelogEntry, and renders entries as titled, underlined blocks.
Every parsing helper here returns what it captured; nothing relies on
state left over from a previous match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .models import ChangelogEntry

MISSING_FROM_BERKSFILE = "Cookbook was not in the berksfile"
MISSING_FROM_POLICYFILE = "Cookbook was not in the Policyfile.lock.json"

# "<abbrev sha> <subject>" as printed by git log --abbrev-commit --pretty=oneline
_COMMIT_LINE = re.compile(r"^([a-f0-9]+) (.*)$")
# scheme://[user@]host/path[.git]
_URL_REMOTE = re.compile(r"^\w+://(?:[^@/]*@)?(?P<rest>.+?)/?$")
# user@host:path[.git] (scp-like syntax)
_SCP_REMOTE = re.compile(r"^[\w.-]+@(?P<host>[^:/]+):(?P<path>.+?)/?$")
_SHORT_NAME = re.compile(r"([\w-]+)/([\w-]+)(?:\.git)?/?$")
# ls-tree lines end in "<TAB><path>"; only top-level files match
_CHANGELOG_FILE = re.compile(r"\s(changelog.*)$", re.IGNORECASE)
_WORD_DIFF_ADDED = re.compile(r"^\{\+(.*)\+\}$")
_MARKDOWN_HEADER = re.compile(r"^#+(.*)$")
_UNDERLINE = re.compile(r"^===+")


def render(entry: ChangelogEntry) -> str:
    """Render an entry as a titled block ending with a newline.

    Empty entries render as "" but callers should drop them before
    joining rather than filtering rendered strings.

    Example:
        Changelog for users: 4.0.0->5.0.0
        =================================
        e1b971a Add test commit message
    """
    if entry.is_empty:
        return ""
    header = f"Changelog for {entry.cookbook}: {entry.version_range}"
    return "\n".join([header, "=" * len(header), *entry.lines, ""])


def new_cookbook_placeholder(
    markdown: bool, message: str = MISSING_FROM_BERKSFILE
) -> list[str]:
    """Body used for cookbooks that were not locked before the update."""
    stars = "**" if markdown else ""
    return [f"{stars}{message}{stars}"]


def bulletize(lines: Iterable[str]) -> list[str]:
    """Prefix every line with a markdown bullet."""
    return [f"* {line}" for line in lines]


def https_url(uri: str) -> str | None:
    """Derive the https web URL of a git remote, or None.

    Handles both URL-style remotes (https://, git://, ssh://user@...) and
    scp-like remotes (git@github.com:org/repo.git). The ".git" suffix is
    dropped.
    """
    uri = uri.strip()
    scp = _SCP_REMOTE.match(uri)
    if scp:
        return f"https://{_strip_git_suffix(scp.group('host') + '/' + scp.group('path'))}"
    url = _URL_REMOTE.match(uri)
    if url:
        return f"https://{_strip_git_suffix(url.group('rest'))}"
    return None


def short_name(uri: str) -> str | None:
    """Return "group/repo" for a git remote, or None."""
    match = _SHORT_NAME.search(uri.strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def is_gitlab(url: str) -> bool:
    """Return True for GitLab remotes, which get short `group/repo@sha` references."""
    return "gitlab" in url.lower()


def linkify(url: str, lines: Iterable[str]) -> list[str]:
    """Rewrite the leading commit id of each log line into a link.

    GitHub-style hosts get a markdown-friendly trailing link:
        "abc1234 fixed bug" → "fixed bug (https://github.com/org/repo/commit/abc1234)"
    GitLab hosts get their short reference syntax instead:
        "abc1234 fixed bug" → "org/repo@abc1234 fixed bug"

    Lines that don't start with a commit id are kept as-is.
    """
    base = _strip_git_suffix(url.rstrip("/"))
    short = short_name(url) if is_gitlab(url) else None

    result: list[str] = []
    for line in lines:
        match = _COMMIT_LINE.match(line.strip())
        if not match:
            result.append(line)
            continue
        sha, message = match.groups()
        if short:
            result.append(f"{short}@{sha} {message}")
        else:
            result.append(f"{message} ({base}/commit/{sha})")
    return result


def find_changelog_file(ls_tree_lines: Iterable[str]) -> str | None:
    """Return the name of a top-level CHANGELOG* file from ls-tree output."""
    for line in ls_tree_lines:
        match = _CHANGELOG_FILE.search(line.strip())
        if match:
            return match.group(1)
    return None


def changelog_from_word_diff(diff_lines: Iterable[str]) -> list[str]:
    """Extract the added lines of a CHANGELOG word-diff.

    Only whole-line additions ("{+...+}") are kept. Markdown section headers
    are collapsed to a title followed by "---", and "===" underlines are
    dropped along with every other piece of diff metadata.
    """
    lines: list[str] = []
    for raw in diff_lines:
        added = _WORD_DIFF_ADDED.match(raw.rstrip("\r\n"))
        if not added:
            continue
        text = added.group(1).strip()
        header = _MARKDOWN_HEADER.match(text)
        if header:
            lines.extend([header.group(1).strip(), "---"])
        elif not _UNDERLINE.match(text):
            lines.append(text)
    return lines


def clean(lines: Iterable[str]) -> list[str]:
    """Strip surrounding whitespace and drop blank lines."""
    return [line.strip() for line in lines if line.strip()]


def _strip_git_suffix(value: str) -> str:
    return value[: -len(".git")] if value.endswith(".git") else value
