# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.errors",
#   "purpose": "Error taxonomy and synthetic ledger status codes for the crawler.",
#   "sections": [
#     {"id": "crawlererror", "name": "CrawlerError", "anchor": "class-crawlererror", "kind": "class"},
#     {"id": "ratelimited", "name": "RateLimited", "anchor": "class-ratelimited", "kind": "class"},
#     {"id": "fetchfailed", "name": "FetchFailed", "anchor": "class-fetchfailed", "kind": "class"},
#     {"id": "manifestparseerror", "name": "ManifestParseError", "anchor": "class-manifestparseerror", "kind": "class"},
#     {"id": "storageerror", "name": "StorageError", "anchor": "class-storageerror", "kind": "class"},
#     {"id": "syntheticstatus", "name": "SyntheticStatus", "anchor": "class-syntheticstatus", "kind": "class"},
#     {"id": "describe-status", "name": "describe_status", "anchor": "function-describe-status", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for the crawler.

Responsibilities
----------------
- Define the exception types raised by :mod:`SchedulingLinks.Crawler.fetcher`
  (``RateLimited``, ``FetchFailed``) and by manifest parsing
  (``ManifestParseError``), keeping the URL and status on the instance so the
  orchestrator can log and record them without re-deriving context.
- Wrap persistence failures (``sqlite3.Error``, lock timeouts) into
  :class:`StorageError`, the only kind that is fatal for the current operation.
- Provide :class:`SyntheticStatus`, the sub-100 status codes the ledger uses
  for outcomes that never produced an HTTP response.

Design Notes
------------
- Every exception derives from :class:`CrawlerError` so callers can catch the
  whole family in one clause when they only need to log.
- Synthetic codes are deliberately below 100 so they can never collide with a
  real HTTP status.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any

__all__ = (
    "CrawlerError",
    "RateLimited",
    "FetchFailed",
    "ManifestParseError",
    "StorageError",
    "SyntheticStatus",
    "SUCCESS_STATUSES",
    "describe_status",
)

SUCCESS_STATUSES = frozenset({200, 304})


class SyntheticStatus(IntEnum):
    """Ledger status codes for outcomes without an HTTP response."""

    TRANSPORT_ERROR = 0
    RATE_LIMITED = 1
    UNPARSEABLE = 2
    NOT_MODIFIED_UNCACHED = 3


class CrawlerError(Exception):
    """Base class for crawler errors."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class RateLimited(CrawlerError):
    """Raised when the last attempt on a URL is still inside the rate-limit window."""

    def __init__(
        self,
        url: str,
        *,
        last_attempt_sec: int,
        window_s: int,
        now: float,
    ) -> None:
        retry_in = max(0.0, last_attempt_sec + window_s - now)
        super().__init__(
            f"Rate limited: last attempt on {url} was {now - last_attempt_sec:.0f}s ago "
            f"(window {window_s}s, retry in {retry_in:.0f}s)",
            url=url,
        )
        self.last_attempt_sec = last_attempt_sec
        self.window_s = window_s
        self.retry_in_s = retry_in


class FetchFailed(CrawlerError):
    """Raised for a non-success HTTP status or a transport error."""

    def __init__(
        self,
        url: str,
        *,
        status_code: int = SyntheticStatus.TRANSPORT_ERROR,
        detail: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Fetch of {url} failed: {describe_status(status_code)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, url=url)
        self.status_code = int(status_code)
        self.detail = detail
        self.details = details or {}

    @property
    def is_transport_error(self) -> bool:
        return self.status_code == SyntheticStatus.TRANSPORT_ERROR


class ManifestParseError(CrawlerError):
    """Raised when a manifest body is not a usable manifest document."""


class StorageError(CrawlerError):
    """Raised when the crawler database or its lock files cannot be used."""


def describe_status(status_code: int | None) -> str:
    """Return a short human-readable label for a ledger status code.

    Examples:
        >>> describe_status(404)
        'HTTP 404'
        >>> describe_status(0)
        'transport error'
    """

    if status_code is None:
        return "unknown status"
    if status_code == SyntheticStatus.TRANSPORT_ERROR:
        return "transport error"
    if status_code == SyntheticStatus.RATE_LIMITED:
        return "rate limited"
    if status_code == SyntheticStatus.UNPARSEABLE:
        return "unparseable manifest"
    if status_code == SyntheticStatus.NOT_MODIFIED_UNCACHED:
        return "304 without a cached entry"
    return f"HTTP {status_code}"
