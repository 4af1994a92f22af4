"""Supermarket lookups: from a cookbook name to its upstream git remote.

Cookbooks fetched from a Supermarket don't record where their source lives.
The Supermarket API does: each cookbook document carries a source_url (or
external_url) next to the list of published versions. SupermarketRegistry
queries every configured Supermarket and keeps the answer from the one that
publishes the highest version.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from types import TracebackType
from typing import Protocol

import httpx

from .errors import NoSourceFoundError
from .models import CookbookMetadata

logger = logging.getLogger(__name__)

DEFAULT_SOURCES = ["https://supermarket.chef.io"]

_HOSTED_REPO = re.compile(r"(gitlab.*|github)\.com/([^.]+)(?:\.git)?")


class PackageRegistry(Protocol):
    """What the changelog engine needs from a package registry."""

    def lookup(self, sources: Sequence[str], name: str) -> list[CookbookMetadata]: ...

    def source_url_for(self, sources: Sequence[str], name: str) -> str: ...


class SupermarketRegistry:
    """Query one or more Supermarket-compatible APIs.

    Args:
        client: HTTP client to use. One is created (and owned) when omitted.
        verify: Verify TLS certificates of the Supermarket endpoints.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        verify: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.Client(
            verify=verify, timeout=timeout, follow_redirects=True
        )

    def lookup(self, sources: Sequence[str], name: str) -> list[CookbookMetadata]:
        """Fetch the cookbook document from every source.

        A source that fails (HTTP error, unreachable, invalid payload) is
        logged and skipped so one dead mirror does not hide the others.
        """
        found: list[CookbookMetadata] = []
        for source in sources:
            url = f"{source.rstrip('/')}/api/v1/cookbooks/{name}"
            try:
                response = self.client.get(url)
                response.raise_for_status()
                found.append(CookbookMetadata.model_validate(response.json()))
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Error fetching %s from %s: %s: %s",
                    name,
                    source,
                    type(exc).__name__,
                    exc,
                )
        return found

    def source_url_for(self, sources: Sequence[str], name: str) -> str:
        """Return the declared source URL of the highest published version.

        Raises:
            NoSourceFoundError: If no source returned a usable URL.
        """
        candidates = sorted(self.lookup(sources, name), key=lambda m: m.highest_version)
        for metadata in reversed(candidates):
            if metadata.url:
                logger.debug("Using %s as source url for %s", metadata.url, name)
                return metadata.url.strip()
        raise NoSourceFoundError(name)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> SupermarketRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def to_git_url(url: str, cookbook: str) -> str:
    """Convert a GitHub/GitLab project URL into a clonable .git URL.

    Examples:
        "https://github.com/chef-cookbooks/users" → "https://github.com/chef-cookbooks/users.git"
        "https://gitlab.example.com/ops/ntp/" → "https://gitlab.example.com/ops/ntp.git"

    Raises:
        NoSourceFoundError: For URLs that point anywhere else.
    """
    match = _HOSTED_REPO.search(url.strip())
    if not match:
        raise NoSourceFoundError(
            cookbook, f"external url {url} points to unusable location"
        )
    host, path = match.groups()
    return f"https://{host}.com/{path.rstrip('/')}.git"
