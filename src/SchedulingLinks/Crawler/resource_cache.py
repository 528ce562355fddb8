# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.resource_cache",
#   "purpose": "Persistent resource cache and append-only fetch attempt log",
#   "sections": [
#     {"id": "resourcecacheentry", "name": "ResourceCacheEntry", "anchor": "class-resourcecacheentry", "kind": "class"},
#     {"id": "resourcecachestore", "name": "ResourceCacheStore", "anchor": "class-resourcecachestore", "kind": "class"},
#     {"id": "fetchattempt", "name": "FetchAttempt", "anchor": "class-fetchattempt", "kind": "class"},
#     {"id": "fetchattemptlog", "name": "FetchAttemptLog", "anchor": "class-fetchattemptlog", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Persistent freshness state consulted by every fetch.

Responsibilities
----------------
- :class:`ResourceCacheStore` keeps exactly one current entry per URL (body,
  ETag, fetch time, expiry). A 200 response inserts or overwrites the entry; a
  304 refreshes its timestamps in place and leaves the body untouched.
- :class:`FetchAttemptLog` appends one row per network attempt and answers
  "when was this URL last attempted", which is all the rate limiter needs.

Design Notes
------------
- Both stores share a :class:`~SchedulingLinks.Crawler.database.CrawlerDatabase`.
  Write methods accept an optional ``conn`` so the fetcher can record the
  attempt and the cache mutation in one transaction.
- Times are whole Unix seconds, matching the ``*_sec`` columns.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from SchedulingLinks.Crawler.database import CrawlerDatabase

__all__ = (
    "ResourceCacheEntry",
    "ResourceCacheStore",
    "FetchAttempt",
    "FetchAttemptLog",
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceCacheEntry:
    """Current cached copy of a URL."""

    url: str
    fetch_sec: int
    expires_at_sec: int
    etag: Optional[str]
    data: str

    def __post_init__(self) -> None:
        if self.expires_at_sec < self.fetch_sec:
            raise ValueError(
                f"expires_at_sec ({self.expires_at_sec}) precedes fetch_sec ({self.fetch_sec})"
            )

    def is_fresh(self, now: float) -> bool:
        """True while ``now`` is strictly before the expiry."""
        return now < self.expires_at_sec

    def remaining_s(self, now: float) -> int:
        return max(0, int(self.expires_at_sec - now))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ResourceCacheEntry":
        return cls(
            url=row["url"],
            fetch_sec=int(row["fetch_sec"]),
            expires_at_sec=int(row["expires_at_sec"]),
            etag=row["etag"],
            data=row["data"],
        )


class ResourceCacheStore:
    """URL → last known body, ETag, fetch time and expiry."""

    def __init__(self, db: CrawlerDatabase) -> None:
        self._db = db

    def get(self, url: str) -> Optional[ResourceCacheEntry]:
        row = self._db.fetchone(
            """
            SELECT url, fetch_sec, expires_at_sec, etag, data
            FROM resource_cache WHERE url = ?
            """,
            (url,),
        )
        return ResourceCacheEntry.from_row(row) if row else None

    def put(
        self, entry: ResourceCacheEntry, *, conn: Optional[sqlite3.Connection] = None
    ) -> None:
        """Insert the entry, or overwrite the existing entry for the same URL."""

        sql = """
            INSERT INTO resource_cache (url, fetch_sec, expires_at_sec, etag, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                fetch_sec=excluded.fetch_sec,
                expires_at_sec=excluded.expires_at_sec,
                etag=excluded.etag,
                data=excluded.data
        """
        params = (entry.url, entry.fetch_sec, entry.expires_at_sec, entry.etag, entry.data)
        if conn is not None:
            conn.execute(sql, params)
            return
        with self._db.transaction() as txn:
            txn.execute(sql, params)

    def refresh(
        self,
        url: str,
        *,
        fetch_sec: int,
        expires_at_sec: int,
        etag: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Revalidate an entry in place: new timestamps, same body.

        A new ETag replaces the stored one; ``None`` keeps the old value.
        """

        if expires_at_sec < fetch_sec:
            raise ValueError("expires_at_sec must not precede fetch_sec")
        sql = """
            UPDATE resource_cache
            SET fetch_sec = ?, expires_at_sec = ?, etag = COALESCE(?, etag)
            WHERE url = ?
        """
        params = (fetch_sec, expires_at_sec, etag, url)
        if conn is not None:
            cursor = conn.execute(sql, params)
        else:
            with self._db.transaction() as txn:
                cursor = txn.execute(sql, params)
        if cursor.rowcount == 0:
            LOGGER.warning("Refresh requested for uncached URL %s", url)


@dataclass(frozen=True)
class FetchAttempt:
    """One network attempt on a URL."""

    url: str
    fetch_sec: int
    status_code: int


class FetchAttemptLog:
    """Append-only record of network attempts, used for rate limiting."""

    def __init__(self, db: CrawlerDatabase) -> None:
        self._db = db

    def record(
        self,
        url: str,
        fetch_sec: int,
        status_code: int,
        *,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        sql = "INSERT INTO fetch_attempts (url, fetch_sec, status_code) VALUES (?, ?, ?)"
        params = (url, int(fetch_sec), int(status_code))
        if conn is not None:
            conn.execute(sql, params)
            return
        with self._db.transaction() as txn:
            txn.execute(sql, params)

    def last(self, url: str) -> Optional[FetchAttempt]:
        """Most recent attempt on ``url``, or ``None`` if it was never attempted."""

        row = self._db.fetchone(
            """
            SELECT url, fetch_sec, status_code FROM fetch_attempts
            WHERE url = ?
            ORDER BY fetch_sec DESC, fetch_attempt_id DESC
            LIMIT 1
            """,
            (url,),
        )
        if row is None:
            return None
        return FetchAttempt(row["url"], int(row["fetch_sec"]), int(row["status_code"]))

    def history(self, url: str, limit: int = 50) -> List[FetchAttempt]:
        rows = self._db.fetchall(
            """
            SELECT url, fetch_sec, status_code FROM fetch_attempts
            WHERE url = ?
            ORDER BY fetch_sec DESC, fetch_attempt_id DESC
            LIMIT ?
            """,
            (url, limit),
        )
        return [FetchAttempt(r["url"], int(r["fetch_sec"]), int(r["status_code"])) for r in rows]

    def count(self, url: Optional[str] = None) -> int:
        if url is None:
            row = self._db.fetchone("SELECT COUNT(*) FROM fetch_attempts")
        else:
            row = self._db.fetchone("SELECT COUNT(*) FROM fetch_attempts WHERE url = ?", (url,))
        return int(row[0]) if row else 0
