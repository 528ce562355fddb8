# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.orchestrator",
#   "purpose": "Manifest eligibility, manifest crawl and best-effort leaf fan-out",
#   "sections": [
#     {"id": "manifestoutcome", "name": "ManifestOutcome", "anchor": "class-manifestoutcome", "kind": "class"},
#     {"id": "leafcrawlresult", "name": "LeafCrawlResult", "anchor": "class-leafcrawlresult", "kind": "class"},
#     {"id": "manifestcrawlresult", "name": "ManifestCrawlResult", "anchor": "class-manifestcrawlresult", "kind": "class"},
#     {"id": "crawlrunresult", "name": "CrawlRunResult", "anchor": "class-crawlrunresult", "kind": "class"},
#     {"id": "crawlorchestrator", "name": "CrawlOrchestrator", "anchor": "class-crawlorchestrator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Crawl orchestration.

Responsibilities
----------------
- Decide whether a known manifest is due, from its last ledger row and the
  publisher's polling hint.
- Fetch and parse the manifest, record the :class:`ManifestFetch`, then fetch
  every supported leaf descriptor and record a :class:`LeafFetch` (plus its
  jurisdiction tags) for each one.
- Iterate every known manifest exactly once per :meth:`CrawlOrchestrator.run`,
  accumulating :class:`CrawlStats`.

Design Notes
------------
- Best effort: a failed leaf never stops its siblings, a failed manifest never
  stops the run. Only :class:`StorageError` aborts the manifest being crawled;
  :meth:`CrawlOrchestrator.run` logs it and moves on.
- Workers parallelise across manifests (``max_workers``); leaves of one
  manifest are fetched in order. Same-URL serialisation is the fetcher's job.
- No retries. The next external invocation, gated by polling hints and the
  rate-limit window, is the retry.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from SchedulingLinks.Crawler.errors import (
    FetchFailed,
    ManifestParseError,
    RateLimited,
    StorageError,
    SyntheticStatus,
    describe_status,
)
from SchedulingLinks.Crawler.fetcher import FetchOptions, ResourceFetcher
from SchedulingLinks.Crawler.ledger import (
    DEFAULT_MANIFEST_POLL_S,
    CrawlLedger,
    KnownManifest,
    KnownManifestStore,
)
from SchedulingLinks.Crawler.manifest import FileType, ManifestOutput, parse_manifest
from SchedulingLinks.Crawler.states import State, resolve_states
from SchedulingLinks.Crawler.statistics import CrawlStats

__all__ = (
    "ManifestOutcome",
    "LeafCrawlResult",
    "ManifestCrawlResult",
    "CrawlRunResult",
    "CrawlOrchestrator",
)

logger = logging.getLogger(__name__)


class ManifestOutcome(str, Enum):
    """How a known manifest fared in one run."""

    NOT_DUE = "not_due"
    RATE_LIMITED = "rate_limited"
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"
    CRAWLED = "crawled"
    STORAGE_ERROR = "storage_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class LeafCrawlResult:
    file_type: FileType
    url: str
    status_code: int
    leaf_fetch_id: int
    states: List[State] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status_code in (200, 304)


@dataclass
class ManifestCrawlResult:
    """Outcome of :meth:`CrawlOrchestrator.crawl_manifest`."""

    known_manifest_id: int
    url: str
    outcome: ManifestOutcome
    manifest_fetch_id: Optional[int] = None
    status_code: Optional[int] = None
    polling_hint_sec: Optional[int] = None
    leaves: List[LeafCrawlResult] = field(default_factory=list)
    unsupported: int = 0
    rejected: int = 0
    error: Optional[str] = None

    @property
    def leaf_failures(self) -> int:
        return sum(1 for leaf in self.leaves if not leaf.succeeded)


@dataclass
class CrawlRunResult:
    """Everything one run produced."""

    manifests: List[ManifestCrawlResult]
    stats: CrawlStats

    def count(self, outcome: ManifestOutcome) -> int:
        return sum(1 for m in self.manifests if m.outcome is outcome)

    @property
    def outcomes(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for m in self.manifests:
            counts[m.outcome.value] = counts.get(m.outcome.value, 0) + 1
        return counts

    @property
    def leaf_count(self) -> int:
        return sum(len(m.leaves) for m in self.manifests)

    @property
    def leaf_failures(self) -> int:
        return sum(m.leaf_failures for m in self.manifests)


class CrawlOrchestrator:
    """Crawls known manifests and their leaves into the ledger.

    Args:
        fetcher: Cache-aware fetch executor.
        ledger: Append-only crawl ledger.
        known_manifests: Source of root manifest URLs.
        stats: Counters to record into; a fresh instance per run otherwise.
        manifest_poll_default_s: Re-poll interval when a manifest gave no hint.
        max_workers: Manifests crawled concurrently (1 = sequential).
        fetch_options: Options for every fetch of this orchestrator.
        clock: Source of "now" in Unix seconds.
    """

    def __init__(
        self,
        fetcher: ResourceFetcher,
        ledger: CrawlLedger,
        known_manifests: KnownManifestStore,
        *,
        stats: Optional[CrawlStats] = None,
        manifest_poll_default_s: int = DEFAULT_MANIFEST_POLL_S,
        max_workers: int = 1,
        fetch_options: Optional[FetchOptions] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.fetcher = fetcher
        self.ledger = ledger
        self.known_manifests = known_manifests
        self.stats = stats if stats is not None else CrawlStats()
        self.manifest_poll_default_s = manifest_poll_default_s
        self.max_workers = max(1, int(max_workers))
        self.fetch_options = fetch_options
        self._clock = clock

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def should_fetch_manifest(self, manifest: KnownManifest, now: Optional[float] = None) -> bool:
        """True unless the last fetch's polling window is still open at ``now``."""

        if now is None:
            now = self._clock()
        last = self.ledger.last_manifest_fetch(manifest.known_manifest_id)
        if last is None:
            return True
        return last.should_fetch(now, self.manifest_poll_default_s)

    # ------------------------------------------------------------------
    # Manifest crawl
    # ------------------------------------------------------------------

    def crawl_manifest(
        self, manifest: KnownManifest, now: Optional[float] = None
    ) -> ManifestCrawlResult:
        """Crawl one manifest and its leaves.

        Fetch, parse and leaf failures are recorded and logged, never raised.

        Raises:
            StorageError: The ledger or cache could not be written.
        """
        if now is None:
            now = self._clock()
        url = manifest.url
        result = ManifestCrawlResult(
            known_manifest_id=manifest.known_manifest_id,
            url=url,
            outcome=ManifestOutcome.CRAWLED,
        )
        logger.info(f"Crawling manifest file: {url}")
        self.stats.record(url, "manifest")

        try:
            fetched = self.fetcher.fetch(url, now=now, options=self.fetch_options)
        except RateLimited as exc:
            logger.info(f"Skipping manifest {url}: {exc}")
            result.outcome = ManifestOutcome.RATE_LIMITED
            result.error = str(exc)
            return result
        except FetchFailed as exc:
            logger.warning(f"Failed to fetch manifest {url}: {exc}")
            row = self.ledger.record_manifest_fetch(
                url=url,
                known_manifest_id=manifest.known_manifest_id,
                read_sec=int(now),
                status_code=exc.status_code,
            )
            result.outcome = ManifestOutcome.FETCH_FAILED
            result.manifest_fetch_id = row.manifest_fetch_id
            result.status_code = exc.status_code
            result.error = str(exc)
            return result

        try:
            parsed = parse_manifest(fetched.body, url=url)
        except ManifestParseError as exc:
            logger.warning(f"Failed to parse manifest {url}: {exc}")
            row = self.ledger.record_manifest_fetch(
                url=url,
                known_manifest_id=manifest.known_manifest_id,
                read_sec=int(now),
                status_code=SyntheticStatus.UNPARSEABLE,
                polling_hint_sec=fetched.polling_hint_sec,
            )
            result.outcome = ManifestOutcome.PARSE_FAILED
            result.manifest_fetch_id = row.manifest_fetch_id
            result.status_code = int(SyntheticStatus.UNPARSEABLE)
            result.polling_hint_sec = fetched.polling_hint_sec
            result.error = str(exc)
            return result

        row = self.ledger.record_manifest_fetch(
            url=url,
            known_manifest_id=manifest.known_manifest_id,
            read_sec=int(now),
            status_code=fetched.status_code,
            polling_hint_sec=fetched.polling_hint_sec,
            contents=fetched.body,
        )
        result.manifest_fetch_id = row.manifest_fetch_id
        result.status_code = fetched.status_code
        result.polling_hint_sec = fetched.polling_hint_sec
        result.rejected = len(parsed.rejected)

        for descriptor in parsed.outputs:
            file_type = descriptor.file_type
            if not file_type.is_supported:
                logger.warning(
                    f"Unknown output file type '{descriptor.raw_type}' specified in manifest {url}"
                )
                result.unsupported += 1
                continue
            result.leaves.append(
                self._crawl_leaf(descriptor, file_type, row.manifest_fetch_id, now)
            )

        logger.info(
            f"Crawled manifest {url}: {len(result.leaves)} leaves "
            f"({result.leaf_failures} failed, {result.unsupported} unsupported)"
        )
        return result

    def _crawl_leaf(
        self,
        descriptor: ManifestOutput,
        file_type: FileType,
        manifest_fetch_id: int,
        now: float,
    ) -> LeafCrawlResult:
        url = descriptor.url
        logger.info(f"Crawling {file_type.value} file: {url}")
        self.stats.record(url, file_type.stats_key)
        states = resolve_states(descriptor.states, url=url)

        contents: Optional[str] = None
        hint: Optional[int] = None
        try:
            fetched = self.fetcher.fetch(url, now=now, options=self.fetch_options)
        except RateLimited as exc:
            logger.info(f"Skipping {file_type.value} file {url}: {exc}")
            status = int(SyntheticStatus.RATE_LIMITED)
        except FetchFailed as exc:
            logger.warning(f"Unable to crawl {file_type.value} file {url}: {exc}")
            status = exc.status_code
        else:
            status = fetched.status_code
            contents = fetched.body
            hint = fetched.polling_hint_sec

        leaf = self.ledger.record_leaf_fetch(
            file_type=file_type,
            url=url,
            manifest_fetch_id=manifest_fetch_id,
            read_sec=int(now),
            status_code=status,
            polling_hint_sec=hint,
            contents=contents,
            states=states,
        )
        if contents is None:
            logger.debug(f"Recorded failed {file_type.value} fetch {url}: {describe_status(status)}")
        return LeafCrawlResult(
            file_type=file_type,
            url=url,
            status_code=status,
            leaf_fetch_id=leaf.leaf_fetch_id,
            states=states,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, now: Optional[float] = None, *, force: bool = False) -> CrawlRunResult:
        """Crawl every due known manifest once.

        Args:
            now: Evaluation time for eligibility and fetches (clock if omitted).
            force: Ignore polling hints and crawl every known manifest.
        """
        manifests = self.known_manifests.all()
        logger.info(f"Inspecting {len(manifests)} manifests")
        self.stats.crawl_start()

        def crawl_one(manifest: KnownManifest) -> ManifestCrawlResult:
            at = self._clock() if now is None else now
            try:
                if not force and not self.should_fetch_manifest(manifest, at):
                    logger.info(f"Manifest {manifest.url} is not due yet")
                    return ManifestCrawlResult(
                        known_manifest_id=manifest.known_manifest_id,
                        url=manifest.url,
                        outcome=ManifestOutcome.NOT_DUE,
                    )
                return self.crawl_manifest(manifest, at)
            except StorageError as exc:
                logger.error(f"Storage failure while crawling manifest {manifest.url}: {exc}")
                return ManifestCrawlResult(
                    known_manifest_id=manifest.known_manifest_id,
                    url=manifest.url,
                    outcome=ManifestOutcome.STORAGE_ERROR,
                    error=str(exc),
                )
            except Exception as exc:
                logger.exception(f"Unexpected failure while crawling manifest {manifest.url}")
                return ManifestCrawlResult(
                    known_manifest_id=manifest.known_manifest_id,
                    url=manifest.url,
                    outcome=ManifestOutcome.INTERNAL_ERROR,
                    error=f"{type(exc).__name__}: {exc}",
                )

        try:
            if self.max_workers == 1 or len(manifests) <= 1:
                results = [crawl_one(m) for m in manifests]
            else:
                with ThreadPoolExecutor(
                    max_workers=min(self.max_workers, len(manifests)),
                    thread_name_prefix="crawl",
                ) as executor:
                    results = list(executor.map(crawl_one, manifests))
        finally:
            self.stats.crawl_end()

        logger.info(self.stats.format())
        return CrawlRunResult(manifests=results, stats=self.stats)
