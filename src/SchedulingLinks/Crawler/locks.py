# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.locks",
#   "purpose": "Per-URL locking that serialises fetches across threads and processes",
#   "sections": [
#     {"id": "urllocks", "name": "UrlLocks", "anchor": "class-urllocks", "kind": "class"},
#     {"id": "lock-metrics-snapshot", "name": "UrlLocks.metrics_snapshot", "anchor": "function-lock-metrics-snapshot", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Per-URL locking for the fetch check-then-record sequence.

Responsibilities
----------------
- Serialise every fetch of the same URL so that reading the cache, reading the
  last attempt, deciding, and recording the outcome happen atomically.
- Cover both threads of one process (a :class:`threading.Lock` per URL) and
  independent crawler processes sharing the database (a :mod:`filelock` lock
  file per URL next to the database).

Design Notes
------------
- Lock files are named after a SHA-256 digest of the URL so arbitrary URLs map
  to safe file names.
- Set ``SLC_LOCK_USE_SOFT`` to use :class:`filelock.SoftFileLock` on
  filesystems without working ``flock``.
- A lock timeout surfaces as :class:`StorageError`; fetches never wait
  forever on a stuck peer.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional

from filelock import FileLock, SoftFileLock, Timeout

from SchedulingLinks.Crawler.errors import StorageError

__all__ = ["UrlLocks", "Timeout"]

LOGGER = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)

_SOFT_LOCK_ENV = "SLC_LOCK_USE_SOFT"
_DEFAULT_POLL_INTERVAL = 0.05  # seconds


def _select_lock_class():
    return SoftFileLock if os.getenv(_SOFT_LOCK_ENV) else FileLock


def _digest(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:24]


@dataclass
class _LockMetrics:
    acquire_total: int = 0
    timeout_total: int = 0
    wait_ms_max: float = 0.0


@dataclass
class _ThreadLockEntry:
    lock: threading.Lock
    users: int = 0


class UrlLocks:
    """Factory for per-URL critical sections.

    In-process locks exist only while some thread holds or waits for them, so
    a long-lived instance does not grow with the number of URLs seen.

    Args:
        lock_dir: Directory for lock files. ``None`` disables cross-process
            locking (in-memory databases cannot be shared anyway).
        timeout_s: Maximum time to wait for a URL lock.
    """

    def __init__(self, lock_dir: Optional[Path], *, timeout_s: float = 30.0) -> None:
        self.lock_dir = Path(lock_dir) if lock_dir is not None else None
        if self.lock_dir is not None:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.timeout_s = timeout_s
        self._guard = threading.Lock()
        self._thread_locks: Dict[str, _ThreadLockEntry] = {}
        self._metrics = _LockMetrics()

    def _checkout(self, url: str) -> _ThreadLockEntry:
        with self._guard:
            entry = self._thread_locks.get(url)
            if entry is None:
                entry = self._thread_locks[url] = _ThreadLockEntry(threading.Lock())
            entry.users += 1
            return entry

    def _checkin(self, url: str, entry: _ThreadLockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._thread_locks[url]

    def lock_file_for(self, url: str) -> Optional[Path]:
        if self.lock_dir is None:
            return None
        return self.lock_dir / f"url.{_digest(url)}.lock"

    @contextlib.contextmanager
    def hold(self, url: str) -> Iterator[None]:
        """Hold the lock for ``url`` for the duration of the ``with`` block."""

        start = time.monotonic()
        entry = self._checkout(url)
        try:
            if not entry.lock.acquire(timeout=self.timeout_s):
                self._record_timeout()
                raise StorageError(f"Timed out waiting for in-process lock on {url}", url=url)
            try:
                with self._hold_file(url, start):
                    self._record_acquire(start)
                    yield None
            finally:
                entry.lock.release()
        finally:
            self._checkin(url, entry)

    @contextlib.contextmanager
    def _hold_file(self, url: str, start: float) -> Iterator[None]:
        lock_file = self.lock_file_for(url)
        if lock_file is None:
            yield None
            return

        remaining = max(0.0, self.timeout_s - (time.monotonic() - start))
        file_lock = _select_lock_class()(str(lock_file), timeout=remaining)
        try:
            file_lock.acquire(timeout=remaining, poll_interval=_DEFAULT_POLL_INTERVAL)
        except Timeout as exc:
            self._record_timeout()
            LOGGER.info("lock-timeout url=%s lock_file=%s", url, lock_file)
            raise StorageError(f"Timed out waiting for lock on {url}", url=url) from exc
        try:
            yield None
        finally:
            file_lock.release()

    def _record_acquire(self, start: float) -> None:
        wait_ms = max((time.monotonic() - start) * 1000.0, 0.0)
        with self._guard:
            self._metrics.acquire_total += 1
            self._metrics.wait_ms_max = max(self._metrics.wait_ms_max, wait_ms)
        LOGGER.debug("lock-acquired wait_ms=%.3f", wait_ms)

    def _record_timeout(self) -> None:
        with self._guard:
            self._metrics.timeout_total += 1

    def metrics_snapshot(self) -> Dict[str, float]:
        """Counters for lock acquisitions, timeouts, worst wait and live URL locks."""

        with self._guard:
            return {
                "acquire_total": self._metrics.acquire_total,
                "timeout_total": self._metrics.timeout_total,
                "wait_ms_max": self._metrics.wait_ms_max,
                "urls_tracked": len(self._thread_locks),
            }
