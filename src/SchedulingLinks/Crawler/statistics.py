"""Crawl statistics: resources crawled per type and per host, plus run duration.

A :class:`CrawlStats` instance is created per run and passed explicitly to
whoever records into it; workers share it behind its lock, or keep their own
and :meth:`CrawlStats.merge` at the end.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

__all__ = ("CrawlStats",)


class CrawlStats:
    """Thread-safe counters for one crawl run."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._by_type: Dict[str, int] = defaultdict(int)
        self._by_host: Dict[str, int] = defaultdict(int)
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def crawl_start(self) -> None:
        with self._lock:
            self._start = self._clock()
            self._end = None

    def crawl_end(self) -> None:
        with self._lock:
            self._end = self._clock()

    def record(self, url: str, file_type: str) -> None:
        """Count one crawl of ``url`` as ``file_type`` (case-insensitive).

        URLs without a host are counted by type only.
        """
        key = file_type.lower()
        try:
            host = urlsplit(url).netloc
        except ValueError:
            host = ""
        with self._lock:
            self._by_type[key] += 1
            if host:
                self._by_host[host] += 1

    def merge(self, other: "CrawlStats") -> None:
        """Add another instance's counters into this one."""
        if other is self:
            return
        with other._lock:
            by_type = dict(other._by_type)
            by_host = dict(other._by_host)
        with self._lock:
            for k, v in by_type.items():
                self._by_type[k] += v
            for k, v in by_host.items():
                self._by_host[k] += v

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and end (or now, if still running)."""
        with self._lock:
            if self._start is None:
                return None
            end = self._end if self._end is not None else self._clock()
            return end - self._start

    @property
    def by_type(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_type)

    @property
    def by_host(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_host)

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._by_type.values())

    def as_dict(self) -> Dict[str, object]:
        return {
            "duration_s": self.duration,
            "total": self.total,
            "by_type": dict(sorted(self.by_type.items())),
            "by_host": dict(sorted(self.by_host.items())),
        }

    def format(self) -> str:
        """Plain-text report for log output."""
        duration = self.duration
        lines = [
            f"Crawling took {duration:.2f}s." if duration is not None else "Crawl not started.",
            "",
            "Crawled resources by type:",
        ]
        lines.extend(f"  {k:<10} {v}" for k, v in sorted(self.by_type.items()))
        lines.append("")
        lines.append("Crawled resources by host:")
        lines.extend(f"  {k:<30} {v}" for k, v in sorted(self.by_host.items()))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()
