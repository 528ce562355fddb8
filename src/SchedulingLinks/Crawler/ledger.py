# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.ledger",
#   "purpose": "Known manifests and the append-only crawl ledger consumed by the parser",
#   "sections": [
#     {"id": "knownmanifest", "name": "KnownManifest", "anchor": "class-knownmanifest", "kind": "class"},
#     {"id": "knownmanifeststore", "name": "KnownManifestStore", "anchor": "class-knownmanifeststore", "kind": "class"},
#     {"id": "load-manifest-urls", "name": "load_manifest_urls", "anchor": "function-load-manifest-urls", "kind": "function"},
#     {"id": "leaftable", "name": "LeafTable", "anchor": "class-leaftable", "kind": "class"},
#     {"id": "manifestfetch", "name": "ManifestFetch", "anchor": "class-manifestfetch", "kind": "class"},
#     {"id": "leaffetch", "name": "LeafFetch", "anchor": "class-leaffetch", "kind": "class"},
#     {"id": "crawlledger", "name": "CrawlLedger", "anchor": "class-crawlledger", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Known manifests and the crawl ledger.

Responsibilities
----------------
- :class:`KnownManifestStore` holds the operator-configured root manifest URLs
  (seeded from a one-URL-per-line file via :func:`load_manifest_urls`).
- :class:`CrawlLedger` appends manifest fetches, leaf fetches and
  jurisdiction tags. Rows are never updated or deleted; the external parser
  reads them as the durable record of every crawl pass.

Design Notes
------------
- Leaf types map onto their tables through :data:`LEAF_TABLES`, keyed by the
  closed :class:`~SchedulingLinks.Crawler.manifest.FileType` enum. Table names
  are never taken from input.
- ``contents`` is NULL exactly when the status is not a success (200/304).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlsplit

from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.errors import SUCCESS_STATUSES, ManifestParseError
from SchedulingLinks.Crawler.manifest import FileType, ParsedManifest, parse_manifest
from SchedulingLinks.Crawler.states import State

__all__ = (
    "KnownManifest",
    "KnownManifestStore",
    "load_manifest_urls",
    "LeafTable",
    "LEAF_TABLES",
    "ManifestFetch",
    "LeafFetch",
    "CrawlLedger",
    "DEFAULT_MANIFEST_POLL_S",
)

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_POLL_S = 180


# ---------------------------------------------------------------------------
# Known manifests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KnownManifest:
    """Operator-configured root manifest."""

    known_manifest_id: int
    url: str


def validate_manifest_url(url: str) -> str:
    """Return ``url`` stripped, or raise ``ValueError`` if it is not http(s) with a host."""

    candidate = (url or "").strip()
    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Not a well-formed http(s) URL: {url!r}")
    return candidate


def load_manifest_urls(path: Union[str, Path]) -> List[str]:
    """Read one manifest URL per line, skipping blank lines and ``#`` comments."""

    urls: List[str] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        urls.append(line)
    return urls


class KnownManifestStore:
    """CRUD over ``known_manifests``."""

    def __init__(self, db: CrawlerDatabase) -> None:
        self._db = db

    def add(self, url: str) -> KnownManifest:
        """Register ``url`` (idempotent) and return its row."""

        url = validate_manifest_url(url)
        with self._db.transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO known_manifests (url) VALUES (?)", (url,))
            row = conn.execute(
                "SELECT known_manifest_id, url FROM known_manifests WHERE url = ?", (url,)
            ).fetchone()
        return KnownManifest(int(row["known_manifest_id"]), row["url"])

    def seed(self, urls: Iterable[str]) -> List[KnownManifest]:
        """Register every well-formed URL; malformed ones are logged and skipped."""

        added: List[KnownManifest] = []
        for url in urls:
            try:
                added.append(self.add(url))
            except ValueError as exc:
                logger.warning(f"Skipping known manifest: {exc}")
        return added

    def get(self, known_manifest_id: int) -> Optional[KnownManifest]:
        row = self._db.fetchone(
            "SELECT known_manifest_id, url FROM known_manifests WHERE known_manifest_id = ?",
            (known_manifest_id,),
        )
        return KnownManifest(int(row[0]), row[1]) if row else None

    def all(self) -> List[KnownManifest]:
        rows = self._db.fetchall(
            "SELECT known_manifest_id, url FROM known_manifests ORDER BY known_manifest_id"
        )
        return [KnownManifest(int(r[0]), r[1]) for r in rows]


# ---------------------------------------------------------------------------
# Ledger rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeafTable:
    """Storage layout for one leaf file type."""

    table: str
    id_column: str
    join_table: str


LEAF_TABLES: Dict[FileType, LeafTable] = {
    FileType.LOCATION: LeafTable("location_fetches", "location_fetch_id", "location_fetch_states"),
    FileType.SCHEDULE: LeafTable("schedule_fetches", "schedule_fetch_id", "schedule_fetch_states"),
    FileType.SLOT: LeafTable("slot_fetches", "slot_fetch_id", "slot_fetch_states"),
}


def leaf_table(file_type: FileType) -> LeafTable:
    try:
        return LEAF_TABLES[file_type]
    except KeyError:
        raise ValueError(f"No ledger table for file type {file_type.value}") from None


@dataclass(frozen=True)
class ManifestFetch:
    """One crawl pass over a known manifest."""

    manifest_fetch_id: int
    url: str
    known_manifest_id: int
    read_sec: int
    fetch_status_code: int
    polling_hint_sec: Optional[int]
    contents: Optional[str]

    @property
    def succeeded(self) -> bool:
        return self.contents is not None

    def next_fetch_sec(self, default_poll_s: int = DEFAULT_MANIFEST_POLL_S) -> int:
        interval = self.polling_hint_sec if self.polling_hint_sec is not None else default_poll_s
        return self.read_sec + interval

    def should_fetch(self, now: float, default_poll_s: int = DEFAULT_MANIFEST_POLL_S) -> bool:
        """True once the polling hint (or the default interval) has elapsed."""

        return not self.next_fetch_sec(default_poll_s) > now

    def parse_contents(self) -> ParsedManifest:
        if self.contents is None:
            raise ManifestParseError(
                f"Manifest fetch {self.manifest_fetch_id} failed, cannot parse contents",
                url=self.url,
            )
        return parse_manifest(self.contents, url=self.url)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ManifestFetch":
        return cls(
            manifest_fetch_id=int(row["manifest_fetch_id"]),
            url=row["url"],
            known_manifest_id=int(row["known_manifest_id"]),
            read_sec=int(row["read_sec"]),
            fetch_status_code=int(row["fetch_status_code"]),
            polling_hint_sec=row["polling_hint_sec"],
            contents=row["contents"],
        )


@dataclass(frozen=True)
class LeafFetch:
    """One leaf descriptor processed during a manifest crawl."""

    leaf_fetch_id: int
    file_type: FileType
    url: str
    manifest_fetch_id: int
    read_sec: int
    fetch_status_code: int
    polling_hint_sec: Optional[int]
    contents: Optional[str]


def _check_contents(status_code: int, contents: Optional[str]) -> None:
    if (contents is not None) != (status_code in SUCCESS_STATUSES):
        raise ValueError(
            f"contents must be set exactly for success statuses (status={status_code})"
        )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class CrawlLedger:
    """Append-only record of manifest/leaf fetch outcomes and jurisdiction tags."""

    def __init__(self, db: CrawlerDatabase) -> None:
        self._db = db

    def record_manifest_fetch(
        self,
        *,
        url: str,
        known_manifest_id: int,
        read_sec: int,
        status_code: int,
        polling_hint_sec: Optional[int] = None,
        contents: Optional[str] = None,
    ) -> ManifestFetch:
        _check_contents(status_code, contents)
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO manifest_fetches
                (url, known_manifest_id, read_sec, fetch_status_code, polling_hint_sec, contents)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (url, known_manifest_id, int(read_sec), int(status_code), polling_hint_sec, contents),
            )
            manifest_fetch_id = int(cursor.lastrowid)
        return ManifestFetch(
            manifest_fetch_id=manifest_fetch_id,
            url=url,
            known_manifest_id=known_manifest_id,
            read_sec=int(read_sec),
            fetch_status_code=int(status_code),
            polling_hint_sec=polling_hint_sec,
            contents=contents,
        )

    def record_leaf_fetch(
        self,
        *,
        file_type: FileType,
        url: str,
        manifest_fetch_id: int,
        read_sec: int,
        status_code: int,
        polling_hint_sec: Optional[int] = None,
        contents: Optional[str] = None,
        states: Sequence[State] = (),
    ) -> LeafFetch:
        """Insert a leaf fetch row and its jurisdiction tags in one transaction."""

        layout = leaf_table(file_type)
        _check_contents(status_code, contents)
        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {layout.table}
                (url, manifest_fetch_id, read_sec, fetch_status_code, polling_hint_sec, contents)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (url, manifest_fetch_id, int(read_sec), int(status_code), polling_hint_sec, contents),
            )
            leaf_fetch_id = int(cursor.lastrowid)
            conn.executemany(
                f"INSERT INTO {layout.join_table} ({layout.id_column}, state_id) VALUES (?, ?)",
                [(leaf_fetch_id, int(state)) for state in states],
            )
        return LeafFetch(
            leaf_fetch_id=leaf_fetch_id,
            file_type=file_type,
            url=url,
            manifest_fetch_id=manifest_fetch_id,
            read_sec=int(read_sec),
            fetch_status_code=int(status_code),
            polling_hint_sec=polling_hint_sec,
            contents=contents,
        )

    def last_manifest_fetch(
        self, known_manifest_id: int, *, only_success: bool = False
    ) -> Optional[ManifestFetch]:
        """Latest manifest fetch for a known manifest, optionally successful ones only."""

        sql = """
            SELECT manifest_fetch_id, url, known_manifest_id, read_sec,
                   fetch_status_code, polling_hint_sec, contents
            FROM manifest_fetches
            WHERE known_manifest_id = ?
        """
        if only_success:
            sql += " AND contents IS NOT NULL"
        sql += " ORDER BY read_sec DESC, manifest_fetch_id DESC LIMIT 1"
        row = self._db.fetchone(sql, (known_manifest_id,))
        return ManifestFetch.from_row(row) if row else None

    def manifest_fetches(self, known_manifest_id: Optional[int] = None) -> List[ManifestFetch]:
        sql = """
            SELECT manifest_fetch_id, url, known_manifest_id, read_sec,
                   fetch_status_code, polling_hint_sec, contents
            FROM manifest_fetches
        """
        params: tuple = ()
        if known_manifest_id is not None:
            sql += " WHERE known_manifest_id = ?"
            params = (known_manifest_id,)
        sql += " ORDER BY manifest_fetch_id"
        return [ManifestFetch.from_row(r) for r in self._db.fetchall(sql, params)]

    def leaf_fetches(
        self, manifest_fetch_id: int, file_type: Optional[FileType] = None
    ) -> List[LeafFetch]:
        """Leaf fetches linked to a manifest fetch, all types or one."""

        types = [file_type] if file_type is not None else list(LEAF_TABLES)
        results: List[LeafFetch] = []
        for ft in types:
            layout = leaf_table(ft)
            rows = self._db.fetchall(
                f"""
                SELECT {layout.id_column}, url, manifest_fetch_id, read_sec,
                       fetch_status_code, polling_hint_sec, contents
                FROM {layout.table}
                WHERE manifest_fetch_id = ?
                ORDER BY {layout.id_column}
                """,
                (manifest_fetch_id,),
            )
            results.extend(
                LeafFetch(
                    leaf_fetch_id=int(r[0]),
                    file_type=ft,
                    url=r[1],
                    manifest_fetch_id=int(r[2]),
                    read_sec=int(r[3]),
                    fetch_status_code=int(r[4]),
                    polling_hint_sec=r[5],
                    contents=r[6],
                )
                for r in rows
            )
        return results

    def jurisdictions(self, file_type: FileType, leaf_fetch_id: int) -> List[State]:
        """Jurisdiction tags recorded for one leaf fetch, in insertion order."""

        layout = leaf_table(file_type)
        rows = self._db.fetchall(
            f"SELECT state_id FROM {layout.join_table} WHERE {layout.id_column} = ? ORDER BY rowid",
            (leaf_fetch_id,),
        )
        return [State(int(r[0])) for r in rows]
