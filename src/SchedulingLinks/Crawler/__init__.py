"""
Manifest crawler for scheduling-link publishers.

Discovers published manifests, revalidates them and their leaf resources with
conditional GETs under a per-URL rate limit, and records every outcome in an
append-only crawl ledger for the downstream parser.

Example:
    from SchedulingLinks.Crawler import CrawlRun, load_config

    with CrawlRun(load_config("crawler.yaml")) as crawl:
        result = crawl.run()
"""

from .config import CrawlerConfig, load_config
from .database import CrawlerDatabase
from .errors import CrawlerError, FetchFailed, ManifestParseError, RateLimited, StorageError
from .fetcher import FetchOptions, FetchResult, ResourceFetcher
from .ledger import CrawlLedger, KnownManifestStore
from .manifest import FileType, parse_manifest
from .orchestrator import CrawlOrchestrator, CrawlRunResult, ManifestOutcome
from .runner import CrawlRun
from .states import State
from .statistics import CrawlStats

__all__ = [
    "CrawlerConfig",
    "load_config",
    "CrawlerDatabase",
    "CrawlerError",
    "FetchFailed",
    "ManifestParseError",
    "RateLimited",
    "StorageError",
    "FetchOptions",
    "FetchResult",
    "ResourceFetcher",
    "CrawlLedger",
    "KnownManifestStore",
    "FileType",
    "parse_manifest",
    "CrawlOrchestrator",
    "CrawlRunResult",
    "ManifestOutcome",
    "CrawlRun",
    "State",
    "CrawlStats",
]
