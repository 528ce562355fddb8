"""SQLite connection management for the crawler database."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

from SchedulingLinks.Crawler.errors import StorageError
from SchedulingLinks.Crawler.states import state_rows

__all__ = ("CrawlerDatabase", "MEMORY")

logger = logging.getLogger(__name__)

MEMORY = ":memory:"
_SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class CrawlerDatabase:
    """Thread-safe handle on the crawler's SQLite database.

    A single connection is shared by every store and guarded by a re-entrant
    lock, so workers in the same process never interleave statements. Write
    sequences go through :meth:`transaction`, which opens ``BEGIN IMMEDIATE``
    so that concurrent processes serialise on the database write lock as well.
    Every ``sqlite3.Error`` leaves this class as :class:`StorageError`.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        wal_mode: bool = True,
        busy_timeout_s: float = 30.0,
    ) -> None:
        self.path = Path(path) if str(path) != MEMORY else None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        try:
            self.conn = sqlite3.connect(
                str(self.path) if self.path is not None else MEMORY,
                check_same_thread=False,
                timeout=busy_timeout_s,
                isolation_level=None,
            )
            self.conn.row_factory = sqlite3.Row
            if wal_mode and self.path is not None:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self._init_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open crawler database {path}: {exc}") from exc

        logger.debug(f"Opened crawler database at {path}")

    def _init_schema(self) -> None:
        schema_sql = _SCHEMA_PATH.read_text(encoding="utf-8")
        self.conn.executescript(schema_sql)
        self.conn.executemany(
            "INSERT OR IGNORE INTO states (state_id, name) VALUES (?, ?)",
            state_rows(),
        )

    @property
    def lock_dir(self) -> Optional[Path]:
        """Directory holding per-URL lock files, next to the database file."""

        if self.path is None:
            return None
        return self.path.parent / f"{self.path.name}.locks"

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one immediate write transaction."""

        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Cannot begin transaction: {exc}") from exc
            try:
                yield self.conn
            except sqlite3.Error as exc:
                self._rollback()
                raise StorageError(f"Database write failed: {exc}") from exc
            except BaseException:
                self._rollback()
                raise
            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback()
                raise StorageError(f"Cannot commit transaction: {exc}") from exc

    def _rollback(self) -> None:
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.debug("Rollback failed; transaction already closed", exc_info=True)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, tuple(params)).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"Database read failed: {exc}") from exc

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Database read failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> "CrawlerDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
