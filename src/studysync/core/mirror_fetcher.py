"""Mirror-fallback HTTP fetcher.

Responsibilities:
- Expand a source URL into candidate URLs: direct, each proxy mirror,
  then direct again as last resort
- Try candidates in order with a bounded timeout per attempt
- Blacklist a mirror for the current sync cycle after a transport error
  (timeout, DNS, refused connection); an HTTP error status only skips
  to the next candidate
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from urllib.parse import urlsplit

import requests
import structlog

from studysync.config.sync_config import MirrorConfig, SyncConfig
from studysync.core.errors import FetchError

logger = structlog.get_logger(__name__)

GIST_PAGE_RE = re.compile(r"gist\.github\.com/([^/]+)/([^/#?]+)")


@dataclass(frozen=True)
class Candidate:
    """One retrieval URL; mirror is None for the direct URL."""

    url: str
    mirror: str | None = None


class MirrorBlacklist:
    """Mirror bases that failed at transport level in the current cycle.

    Shared by every fetch in one sync cycle; guarded by a lock so fetches
    on worker threads can report failures safely.
    """

    def __init__(self):
        self._bad: set[str] = set()
        self._lock = threading.Lock()

    def add(self, base: str) -> None:
        with self._lock:
            self._bad.add(base)

    def __contains__(self, base: object) -> bool:
        with self._lock:
            return base in self._bad

    def __len__(self) -> int:
        with self._lock:
            return len(self._bad)

    def snapshot(self) -> set[str]:
        with self._lock:
            return set(self._bad)

    def clear(self) -> None:
        with self._lock:
            self._bad.clear()


def parse_gist_url(url: str) -> tuple[str, str] | None:
    """Extract (user, gist_id) from a gist page URL."""
    match = GIST_PAGE_RE.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def to_raw_url(url: str) -> str:
    """Rewrite a gist page URL to its raw-content URL.

    Other URLs are returned unchanged.
    """
    gist = parse_gist_url(url)
    if gist:
        user, gist_id = gist
        return f"https://gist.githubusercontent.com/{user}/{gist_id}/raw"
    return url


def _rewrite(url: str, mirror: MirrorConfig) -> str | None:
    parts = urlsplit(url)
    if not mirror.serves(parts.netloc):
        return None
    if mirror.style == "host":
        rest = url.split(parts.netloc, 1)[1]
        return mirror.base.rstrip("/") + rest
    prefix = mirror.base if mirror.base.endswith("/") else mirror.base + "/"
    return prefix + url


def _is_proxied(url: str, mirrors: list[MirrorConfig]) -> bool:
    host = urlsplit(url).netloc
    return any(urlsplit(m.base).netloc == host for m in mirrors)


def build_candidates(
    url: str,
    mirrors: list[MirrorConfig],
    max_candidates: int = 6,
) -> list[Candidate]:
    """Build the ordered candidate list for a URL.

    Args:
        url: Source URL (gist page URLs are rewritten to raw first)
        mirrors: Configured proxy mirrors, in priority order
        max_candidates: Upper bound on the list length

    Returns:
        [direct, mirror_1, ..., mirror_n, direct]; just [direct] when no
        mirror serves the URL or it already points at a mirror.
    """
    direct = to_raw_url(url)
    if _is_proxied(direct, mirrors):
        return [Candidate(direct)]

    proxied: list[Candidate] = []
    for mirror in mirrors:
        rewritten = _rewrite(direct, mirror)
        if rewritten is None:
            continue
        proxied.append(Candidate(rewritten, mirror.base))

    if not proxied:
        return [Candidate(direct)]

    room = max(max_candidates - 2, 0)
    return [Candidate(direct), *proxied[:room], Candidate(direct)]


class MirrorFetcher:
    """Fetch URLs through the mirror fallback chain."""

    def __init__(
        self,
        config: SyncConfig,
        session: requests.Session | None = None,
        blacklist: MirrorBlacklist | None = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.blacklist = blacklist if blacklist is not None else MirrorBlacklist()
        if session is None:
            self.session.headers.update({"User-Agent": config.user_agent})

    def candidates(self, url: str) -> list[Candidate]:
        """Candidates for a URL, minus mirrors blacklisted in this cycle."""
        all_candidates = build_candidates(
            url, self.config.mirrors, self.config.max_candidates
        )
        return [
            c for c in all_candidates
            if c.mirror is None or c.mirror not in self.blacklist
        ]

    def fetch(self, url: str) -> requests.Response:
        """Return the first successful response among the candidates.

        Raises:
            FetchError: If every candidate failed. Carries the most recent
                transport error, or the last HTTP status if none occurred.
        """
        last_error: Exception | None = None
        last_status: int | None = None
        tried: list[str] = []

        for candidate in self.candidates(url):
            if candidate.mirror is not None and candidate.mirror in self.blacklist:
                # Blacklisted by an earlier candidate of this same fetch
                continue

            tried.append(candidate.url)
            logger.debug("fetch.attempt", url=candidate.url, mirror=candidate.mirror)

            try:
                response = self.session.get(
                    candidate.url, timeout=self.config.fetch_timeout
                )
            except requests.RequestException as e:
                last_error = e
                logger.info(
                    "fetch.transport_error",
                    url=candidate.url,
                    error=type(e).__name__,
                )
                if candidate.mirror is not None:
                    self.blacklist.add(candidate.mirror)
                    logger.warning("fetch.mirror_blacklisted", mirror=candidate.mirror)
                continue

            if response.ok:
                logger.debug("fetch.ok", url=candidate.url, status=response.status_code)
                return response

            last_status = response.status_code
            logger.info("fetch.http_error", url=candidate.url, status=response.status_code)

        raise FetchError(url, last_error=last_error, tried=tried, last_status=last_status)

    def fetch_text(self, url: str) -> str:
        """Fetch a URL and decode it as UTF-8 (BOM tolerated)."""
        response = self.fetch(url)
        return response.content.decode("utf-8-sig", errors="replace")
