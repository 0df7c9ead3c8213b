"""
Changelog discovery for npm dependencies.

For a package hosted on GitHub, probes (through the rate-limited
:class:`~npmkeeper.core.gateway.UpstreamGateway`) whether the repository
has a ``CHANGELOG.md`` on ``master``, and if not, whether it publishes
GitHub releases. Probe outcomes are remembered per ``owner/repo`` in the
:class:`~npmkeeper.core.link_cache.PersistentLinkCache` so later runs do
not hit GitHub again until the entry expires.

A rate-limited or failed probe leaves the link cache untouched: only a
definite answer from GitHub is ever cached.
"""

from __future__ import annotations

import re
import time
import asyncio
from typing import Callable, Dict, Optional, Set

from npmkeeper.constants import GITHUB_RELEASES_API
from npmkeeper.core.gateway import (
    GatewayNetworkError,
    GatewayRateLimited,
    UpstreamGateway,
)
from npmkeeper.core.link_cache import PersistentLinkCache
from npmkeeper.models.loader import LoaderEntry
from npmkeeper.models.registry import RegistryMetadata
from npmkeeper.utils.logger import get_logger

logger = get_logger("changelog")

__all__ = [
    "ChangelogEntry",
    "ChangelogResolver",
    "changelog_file_url",
    "get_github_url",
    "releases_url",
    "repo_key",
]

ChangelogEntry = LoaderEntry[str]

_HOMEPAGE_GITHUB = re.compile(r"https?://github\.com/[\w.-]+/[\w.-]+")
_REPOSITORY_GITHUB = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?(?:/|$)")
_REPOSITORY_SHORTHAND = re.compile(r"^github:([^/]+)/(.+)$")
_REPO_KEY = re.compile(r"https?://github\.com/([-\w.]+)/([-\w.]+)")

_RELEASES_HEADERS = {"Accept": "application/vnd.github+json"}


def get_github_url(metadata: RegistryMetadata) -> Optional[str]:
    """Find the ``https://github.com/owner/repo`` URL of a package.

    The homepage wins; otherwise the repository field is read, accepting
    the usual npm spellings::

        git+https://github.com/owner/repo.git
        git://github.com/owner/repo.git
        git+ssh://git@github.com/owner/repo.git
        github:owner/repo
    """
    if metadata.homepage is not None:
        match = _HOMEPAGE_GITHUB.search(metadata.homepage)
        if match:
            return match.group(0)

    repository = metadata.repository
    if repository is None:
        return None

    match = _REPOSITORY_GITHUB.search(repository)
    if match:
        return f"https://github.com/{match.group(1)}/{match.group(2)}"

    match = _REPOSITORY_SHORTHAND.match(repository)
    if match:
        return f"https://github.com/{match.group(1)}/{match.group(2)}"

    return None


def repo_key(github_url: str) -> Optional[str]:
    """``owner/repo`` for a GitHub URL, used as the link cache key."""
    match = _REPO_KEY.search(github_url)
    if match is None:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def changelog_file_url(github_url: str) -> str:
    return f"{github_url}/blob/master/CHANGELOG.md"


def releases_url(github_url: str) -> str:
    return f"{github_url}/releases"


class ChangelogResolver:
    """Finds and caches changelog links for dependencies.

    Besides the durable per-repository link cache, the resolver keeps a
    per-dependency :data:`ChangelogEntry` recording whether a lookup was
    started for that name in this process, and its outcome (FULFILLED with
    the URL, or REJECTED when nothing was found or the lookup failed).

    Args:
        gateway: Serialized, rate-limit aware access to GitHub.
        link_cache: Durable cache of probe results.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        gateway: UpstreamGateway,
        link_cache: PersistentLinkCache,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.gateway = gateway
        self.link_cache = link_cache
        self._clock = clock
        self._entries: Dict[str, ChangelogEntry] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    def get_cached(self, dependency_name: str) -> Optional[ChangelogEntry]:
        """The lookup state for ``dependency_name``, if one was started."""
        return self._entries.get(dependency_name)

    def get_changelog_url(self, metadata: RegistryMetadata) -> Optional[str]:
        """Best known changelog link, from the link cache only (no I/O)."""
        github_url = get_github_url(metadata)
        if github_url is None:
            return None
        key = repo_key(github_url)
        if key is None:
            return None

        if self.link_cache.get("changelog", key) is True:
            return changelog_file_url(github_url)
        if self.link_cache.get("releases", key) is True:
            return releases_url(github_url)
        return None

    def start(self, dependency_name: str, metadata: RegistryMetadata) -> "asyncio.Task[None]":
        """Begin a background lookup for ``dependency_name``.

        Must be called from a running event loop. The returned task never
        raises; its outcome is recorded in :meth:`get_cached`.
        """
        start_time = self._clock()
        task = asyncio.get_running_loop().create_task(
            self._lookup(dependency_name, metadata, start_time)
        )
        self._entries[dependency_name] = LoaderEntry.in_progress(start_time, task)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background lookup started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _lookup(
        self, dependency_name: str, metadata: RegistryMetadata, start_time: float
    ) -> None:
        try:
            url = await self.retrieve_and_cache(metadata)
        except asyncio.CancelledError:
            self._entries[dependency_name] = LoaderEntry.rejected(start_time)
            raise
        except Exception as exc:
            logger.warning("Changelog lookup for %s failed: %s", dependency_name, exc)
            self._entries[dependency_name] = LoaderEntry.rejected(start_time)
            return

        if url is None:
            self._entries[dependency_name] = LoaderEntry.rejected(start_time)
        else:
            logger.debug("Changelog for %s: %s", dependency_name, url)
            self._entries[dependency_name] = LoaderEntry.fulfilled(start_time, url)

    async def retrieve_and_cache(self, metadata: RegistryMetadata) -> Optional[str]:
        """Resolve the changelog link, probing GitHub where the cache is silent.

        Order: cached or probed ``CHANGELOG.md``, then cached or probed
        releases. Returns ``None`` when neither exists or the answer is not
        known yet (rate limited or network failure).
        """
        github_url = get_github_url(metadata)
        if github_url is None:
            return None
        key = repo_key(github_url)
        if key is None:
            return None

        has_changelog = self.link_cache.get("changelog", key)
        if has_changelog is True:
            return changelog_file_url(github_url)
        if has_changelog is None and await self._probe_changelog(key, github_url):
            return changelog_file_url(github_url)

        has_releases = self.link_cache.get("releases", key)
        if has_releases is not None:
            return releases_url(github_url) if has_releases else None
        if await self._probe_releases(key, github_url):
            return releases_url(github_url)
        return None

    async def _probe_changelog(self, key: str, github_url: str) -> bool:
        result = await self.gateway.request(changelog_file_url(github_url), method="HEAD")

        if isinstance(result, GatewayRateLimited):
            logger.debug("Skipping CHANGELOG.md probe for %s: rate limited", github_url)
            return False
        if isinstance(result, GatewayNetworkError):
            logger.error("CHANGELOG.md probe for %s failed: %s", github_url, result.error)
            return False

        status = result.response.status_code
        logger.debug("CHANGELOG.md probe for %s returned HTTP %d", github_url, status)
        if 200 <= status < 300:
            await self.link_cache.set("changelog", key, True)
            return True
        if status == 404:
            await self.link_cache.set("changelog", key, False)
        return False

    async def _probe_releases(self, key: str, github_url: str) -> bool:
        api_url = GITHUB_RELEASES_API.format(repo_key=key)
        result = await self.gateway.request(api_url, headers=_RELEASES_HEADERS)

        if isinstance(result, GatewayRateLimited):
            logger.debug("Skipping releases probe for %s: rate limited", github_url)
            return False
        if isinstance(result, GatewayNetworkError):
            logger.error("Releases probe for %s failed: %s", github_url, result.error)
            return False

        response = result.response
        logger.debug("Releases probe for %s returned HTTP %d", github_url, response.status_code)
        if not 200 <= response.status_code < 300:
            return False

        try:
            releases = response.json()
        except ValueError as exc:
            logger.debug("Unreadable releases payload for %s: %s", github_url, exc)
            return False

        has_releases = isinstance(releases, list) and len(releases) > 0
        await self.link_cache.set("releases", key, has_releases)
        return has_releases
