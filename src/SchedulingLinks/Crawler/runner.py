# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.runner",
#   "purpose": "Crawl run harness wiring config, storage, HTTP and orchestrator",
#   "sections": [
#     {"id": "crawlrun", "name": "CrawlRun", "anchor": "class-crawlrun", "kind": "class"},
#     {"id": "run-helper", "name": "run", "anchor": "function-run", "kind": "function"}
#   ]
# }
# === /NAVMAP ===
"""Execution harness for crawl runs.

Responsibilities
----------------
- Open the crawler database and per-URL locks named by ``storage``
- Build the HTTPX client from ``http``
- Assemble the fetcher and orchestrator from ``cache``, ``fetch`` and
  ``orchestrator``
- Run one pass over the known manifests and close everything afterwards

Design Principles
-----------------
- Explicit dependency injection (no globals)
- Type-safe configuration (Pydantic v2)
- ``transport`` and ``clock`` are injectable for tests
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

import httpx

from SchedulingLinks.Crawler.config import CrawlerConfig
from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.fetcher import ResourceFetcher
from SchedulingLinks.Crawler.http_session import create_http_client
from SchedulingLinks.Crawler.ledger import CrawlLedger, KnownManifestStore
from SchedulingLinks.Crawler.locks import UrlLocks
from SchedulingLinks.Crawler.orchestrator import CrawlOrchestrator, CrawlRunResult
from SchedulingLinks.Crawler.statistics import CrawlStats

__all__ = ("CrawlRun", "run")

_LOGGER = logging.getLogger(__name__)


class CrawlRun:
    """Context manager owning the resources of one crawl run.

    Usage:
        config = load_config("crawler.yaml")
        with CrawlRun(config) as crawl:
            result = crawl.run()
    """

    def __init__(
        self,
        config: CrawlerConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.run_id = config.run_id or uuid.uuid4().hex
        self._transport = transport
        self._clock = clock
        self.db: Optional[CrawlerDatabase] = None
        self.client: Optional[httpx.Client] = None
        self.orchestrator: Optional[CrawlOrchestrator] = None

    def __enter__(self) -> "CrawlRun":
        cfg = self.config
        self.db = CrawlerDatabase(
            cfg.storage.db_path,
            wal_mode=cfg.storage.wal_mode,
            busy_timeout_s=cfg.storage.busy_timeout_s,
        )
        try:
            self.client = create_http_client(
                cfg.http.to_http_config(), transport=self._transport
            )
            fetcher = ResourceFetcher(
                self.client,
                self.db,
                locks=UrlLocks(self.db.lock_dir, timeout_s=cfg.storage.lock_timeout_s),
                rate_limit_window_s=cfg.cache.rate_limit_window_s,
                default_expiration_s=cfg.cache.default_expiration_s,
                timeout_s=cfg.http.timeout_s,
                default_options=cfg.fetch.to_fetch_options(),
                clock=self._clock,
            )
            self.orchestrator = CrawlOrchestrator(
                fetcher,
                CrawlLedger(self.db),
                KnownManifestStore(self.db),
                stats=CrawlStats(),
                manifest_poll_default_s=cfg.cache.manifest_poll_default_s,
                max_workers=cfg.orchestrator.max_workers,
                clock=self._clock,
            )
        except BaseException:
            self.close()
            raise
        _LOGGER.info(
            f"Crawl run {self.run_id} initialized (db={cfg.storage.db_path}, "
            f"config={cfg.config_hash()[:8]})"
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
        _LOGGER.info(f"Crawl run {self.run_id} completed")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
        if self.db is not None:
            self.db.close()
            self.db = None

    def run(self, *, force: bool = False, now: Optional[float] = None) -> CrawlRunResult:
        """Crawl every due known manifest once."""

        if self.orchestrator is None:
            raise RuntimeError("CrawlRun must be entered before run()")
        return self.orchestrator.run(now, force=force)


def run(
    config: CrawlerConfig,
    *,
    force: bool = False,
    transport: Optional[httpx.BaseTransport] = None,
) -> CrawlRunResult:
    """One-shot helper: open a :class:`CrawlRun`, crawl, close."""

    with CrawlRun(config, transport=transport) as crawl:
        return crawl.run(force=force)
