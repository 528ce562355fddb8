"""Conditional GET support (ETag and If-Modified-Since).

Responsibilities
----------------
- Derive revalidation validators from a cached resource entry
- Generate If-None-Match and If-Modified-Since headers for requests, honouring
  the per-fetch suppression switches
- Read the ETag validator from responses

Design Notes
------------
- Immutable dataclass for validators
- If-Modified-Since carries the time the cached copy was fetched, formatted
  as an HTTP date; the publisher's Last-Modified is not stored
- Weak ETags are sent back verbatim (``W/`` prefix included)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.utils import formatdate
from typing import Mapping, Optional

from SchedulingLinks.Crawler.resource_cache import ResourceCacheEntry

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityValidator:
    """Validators available for revalidating a cached resource.

    Attributes:
        etag: Entity tag from the cached response (may be weak)
        fetch_sec: Unix seconds when the cached copy was fetched
    """

    etag: Optional[str] = None
    fetch_sec: Optional[int] = None

    @classmethod
    def from_entry(cls, entry: Optional[ResourceCacheEntry]) -> "EntityValidator":
        if entry is None:
            return cls()
        return cls(etag=entry.etag or None, fetch_sec=entry.fetch_sec)

    @property
    def available(self) -> bool:
        return bool(self.etag or self.fetch_sec is not None)


def http_date(unix_sec: float) -> str:
    """Format Unix seconds as an RFC 7231 HTTP date.

    Examples:
        >>> http_date(0)
        'Thu, 01 Jan 1970 00:00:00 GMT'
    """
    return formatdate(unix_sec, usegmt=True)


def build_conditional_headers(
    validator: EntityValidator,
    *,
    suppress_if_none_match: bool = False,
    suppress_if_modified_since: bool = False,
) -> dict[str, str]:
    """Build If-None-Match and If-Modified-Since headers for a revalidation.

    Examples:
        >>> build_conditional_headers(EntityValidator(etag='"abc"', fetch_sec=0))
        {'If-None-Match': '"abc"', 'If-Modified-Since': 'Thu, 01 Jan 1970 00:00:00 GMT'}
        >>> build_conditional_headers(EntityValidator(etag='"abc"'), suppress_if_none_match=True)
        {}
    """
    headers: dict[str, str] = {}

    if validator.etag and not suppress_if_none_match:
        headers["If-None-Match"] = validator.etag

    if validator.fetch_sec is not None and not suppress_if_modified_since:
        headers["If-Modified-Since"] = http_date(validator.fetch_sec)

    return headers


def response_etag(headers: Mapping[str, str]) -> Optional[str]:
    """Return the response ETag (case-insensitive lookup), or ``None``."""

    for key, value in headers.items():
        if key.lower() == "etag":
            etag = value.strip()
            return etag or None
    return None
