# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.fetcher",
#   "purpose": "Cache-aware, rate-limited conditional GET executor",
#   "sections": [
#     {"id": "fetchoptions", "name": "FetchOptions", "anchor": "class-fetchoptions", "kind": "class"},
#     {"id": "fetchsource", "name": "FetchSource", "anchor": "class-fetchsource", "kind": "class"},
#     {"id": "fetchresult", "name": "FetchResult", "anchor": "class-fetchresult", "kind": "class"},
#     {"id": "resourcefetcher", "name": "ResourceFetcher", "anchor": "class-resourcefetcher", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Fetch executor: decides whether a URL may hit the network, then revalidates.

Responsibilities
----------------
- Serve fresh cache entries without any network call.
- Enforce the minimum interval between network attempts on the same URL,
  using the append-only attempt log (:class:`RateLimited` otherwise).
- Issue conditional GETs with ``If-None-Match`` / ``If-Modified-Since``,
  classify the response and derive the next expiry.
- Record exactly one attempt per completed network call and mutate the cache
  only on 200/304.

Design Notes
------------
- Freshness state is re-derived from the database on every call; nothing is
  cached in memory between calls, so independent processes can share one
  database.
- The whole read → decide → request → record sequence runs under the per-URL
  lock from :mod:`SchedulingLinks.Crawler.locks`; the attempt row and the
  cache mutation are written in one transaction.
- 200 and 304 are the only success statuses; a 304 without a cached entry is
  a failure because there is no body to return.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx

from SchedulingLinks.Crawler.cache_control import compute_expires_at, polling_hint
from SchedulingLinks.Crawler.conditional_requests import (
    EntityValidator,
    build_conditional_headers,
    response_etag,
)
from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.errors import FetchFailed, RateLimited, SyntheticStatus
from SchedulingLinks.Crawler.locks import UrlLocks
from SchedulingLinks.Crawler.resource_cache import (
    FetchAttemptLog,
    ResourceCacheEntry,
    ResourceCacheStore,
)

__all__ = (
    "FetchOptions",
    "FetchSource",
    "FetchResult",
    "ResourceFetcher",
    "DEFAULT_RATE_LIMIT_WINDOW_S",
    "DEFAULT_EXPIRATION_S",
    "DEFAULT_TIMEOUT_S",
)

LOGGER = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_WINDOW_S = 90
DEFAULT_EXPIRATION_S = 120
DEFAULT_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class FetchOptions:
    """Per-call switches controlling cache and rate-limit interaction.

    Attributes:
        skip_cache: Never serve or revalidate against the cached entry; no
            conditional headers are sent.
        ignore_rate_limiting: Issue the request even inside the window.
        suppress_if_none_match: Do not send ``If-None-Match``.
        suppress_if_modified_since: Do not send ``If-Modified-Since``.
        suppress_cache_write: Do not insert or refresh the cache entry.
    """

    skip_cache: bool = False
    ignore_rate_limiting: bool = False
    suppress_if_none_match: bool = False
    suppress_if_modified_since: bool = False
    suppress_cache_write: bool = False


class FetchSource(str, Enum):
    """Where the returned body came from."""

    CACHE = "cache"
    NETWORK = "network"
    REVALIDATED = "revalidated"


@dataclass(frozen=True)
class FetchResult:
    """Successful outcome of :meth:`ResourceFetcher.fetch`."""

    url: str
    body: str
    status_code: int
    source: FetchSource
    fetched_at: int
    expires_at_sec: int
    polling_hint_sec: Optional[int] = None
    etag: Optional[str] = None

    @property
    def from_cache(self) -> bool:
        return self.source is FetchSource.CACHE


class ResourceFetcher:
    """Cache-aware GET executor over a shared crawler database.

    Args:
        client: HTTPX client carrying the User-Agent and default timeout.
        db: Crawler database holding ``resource_cache`` and ``fetch_attempts``.
        locks: Per-URL locks; built next to the database when omitted.
        rate_limit_window_s: Minimum seconds between network attempts per URL.
        default_expiration_s: Expiry offset when the response carries no
            ``Expires`` or ``max-age``.
        timeout_s: Per-request timeout.
        default_options: Options used when :meth:`fetch` gets none.
        clock: Source of "now" (Unix seconds) when callers pass none.
    """

    def __init__(
        self,
        client: httpx.Client,
        db: CrawlerDatabase,
        *,
        locks: Optional[UrlLocks] = None,
        rate_limit_window_s: int = DEFAULT_RATE_LIMIT_WINDOW_S,
        default_expiration_s: int = DEFAULT_EXPIRATION_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_options: FetchOptions = FetchOptions(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._db = db
        self.cache = ResourceCacheStore(db)
        self.attempts = FetchAttemptLog(db)
        self.locks = locks or UrlLocks(db.lock_dir)
        self.rate_limit_window_s = rate_limit_window_s
        self.default_expiration_s = default_expiration_s
        self.timeout_s = timeout_s
        self.default_options = default_options
        self._clock = clock

    def fetch(
        self,
        url: str,
        now: Optional[float] = None,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """Return the body of ``url``, from cache or network.

        Raises:
            RateLimited: The cache is stale and the last attempt is inside the window.
            FetchFailed: Non-success status or transport error.
            StorageError: The database or lock file could not be used.
        """
        if now is None:
            now = self._clock()
        opts = options or self.default_options

        with self.locks.hold(url):
            entry = None if opts.skip_cache else self.cache.get(url)
            if entry is not None and entry.is_fresh(now):
                LOGGER.debug("Cache hit for %s (expires in %ss)", url, entry.remaining_s(now))
                return FetchResult(
                    url=url,
                    body=entry.data,
                    status_code=200,
                    source=FetchSource.CACHE,
                    fetched_at=entry.fetch_sec,
                    expires_at_sec=entry.expires_at_sec,
                    polling_hint_sec=entry.remaining_s(now),
                    etag=entry.etag,
                )

            if not opts.ignore_rate_limiting:
                self._check_rate_limit(url, now)

            headers: dict[str, str] = {}
            if entry is not None:
                headers = build_conditional_headers(
                    EntityValidator.from_entry(entry),
                    suppress_if_none_match=opts.suppress_if_none_match,
                    suppress_if_modified_since=opts.suppress_if_modified_since,
                )

            fetch_sec = int(now)
            try:
                response = self._client.get(url, headers=headers, timeout=self.timeout_s)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                self.attempts.record(url, fetch_sec, SyntheticStatus.TRANSPORT_ERROR)
                raise FetchFailed(
                    url,
                    status_code=SyntheticStatus.TRANSPORT_ERROR,
                    detail=f"{type(exc).__name__}: {exc}",
                ) from exc

            return self._handle_response(url, response, entry, fetch_sec, opts)

    def _check_rate_limit(self, url: str, now: float) -> None:
        last = self.attempts.last(url)
        if last is None:
            return
        if now - last.fetch_sec < self.rate_limit_window_s:
            raise RateLimited(
                url,
                last_attempt_sec=last.fetch_sec,
                window_s=self.rate_limit_window_s,
                now=now,
            )

    def _handle_response(
        self,
        url: str,
        response: httpx.Response,
        entry: Optional[ResourceCacheEntry],
        fetch_sec: int,
        opts: FetchOptions,
    ) -> FetchResult:
        status = response.status_code
        hint = polling_hint(response.headers)

        if status == 304 and entry is not None:
            expires_at = compute_expires_at(
                response.headers,
                fetch_sec=fetch_sec,
                default_expiration_s=self.default_expiration_s,
            )
            etag = response_etag(response.headers)
            with self._db.transaction() as conn:
                self.attempts.record(url, fetch_sec, status, conn=conn)
                if not opts.suppress_cache_write:
                    self.cache.refresh(
                        url,
                        fetch_sec=fetch_sec,
                        expires_at_sec=expires_at,
                        etag=etag,
                        conn=conn,
                    )
            LOGGER.debug("Revalidated %s (304), expires at %s", url, expires_at)
            return FetchResult(
                url=url,
                body=entry.data,
                status_code=status,
                source=FetchSource.REVALIDATED,
                fetched_at=fetch_sec,
                expires_at_sec=expires_at,
                polling_hint_sec=hint,
                etag=etag or entry.etag,
            )

        if status == 200:
            body = response.text
            expires_at = compute_expires_at(
                response.headers,
                fetch_sec=fetch_sec,
                default_expiration_s=self.default_expiration_s,
            )
            etag = response_etag(response.headers)
            with self._db.transaction() as conn:
                self.attempts.record(url, fetch_sec, status, conn=conn)
                if not opts.suppress_cache_write:
                    self.cache.put(
                        ResourceCacheEntry(
                            url=url,
                            fetch_sec=fetch_sec,
                            expires_at_sec=expires_at,
                            etag=etag,
                            data=body,
                        ),
                        conn=conn,
                    )
            LOGGER.debug("Fetched %s (200, %d chars), expires at %s", url, len(body), expires_at)
            return FetchResult(
                url=url,
                body=body,
                status_code=status,
                source=FetchSource.NETWORK,
                fetched_at=fetch_sec,
                expires_at_sec=expires_at,
                polling_hint_sec=hint,
                etag=etag,
            )

        self.attempts.record(url, fetch_sec, status)
        if status == 304:
            # No cached body to return.
            raise FetchFailed(url, status_code=SyntheticStatus.NOT_MODIFIED_UNCACHED)
        raise FetchFailed(url, status_code=status, detail=response.reason_phrase or None)
