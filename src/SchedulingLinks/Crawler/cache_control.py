# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.cache_control",
#   "purpose": "Cache-Control / Expires interpretation for resource expiry and polling hints.",
#   "sections": [
#     {"id": "cachecontroldirective", "name": "CacheControlDirective", "anchor": "class-cachecontroldirective", "kind": "class"},
#     {"id": "parse-cache-control", "name": "parse_cache_control", "anchor": "function-parse-cache-control", "kind": "function"},
#     {"id": "parse-expires", "name": "parse_expires", "anchor": "function-parse-expires", "kind": "function"},
#     {"id": "compute-expires-at", "name": "compute_expires_at", "anchor": "function-compute-expires-at", "kind": "function"},
#     {"id": "polling-hint", "name": "polling_hint", "anchor": "function-polling-hint", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Cache-Control and Expires interpretation.

Responsibilities
----------------
- Parse the ``Cache-Control`` header into a structured directive.
- Parse the ``Expires`` header into Unix seconds.
- Derive the expiry of a freshly fetched or revalidated resource, applying
  (lowest to highest precedence) the configured default offset, ``Expires``,
  then ``max-age``.
- Extract the publisher's polling hint (``max-age``) for the crawl ledger.

Design Notes
------------
- Frozen dataclass for parsed directives.
- Malformed values are logged at DEBUG and ignored, never raised.
- An ``Expires`` date in the past clamps the expiry to the fetch time, so the
  entry is immediately stale but ``expires_at >= fetch_at`` still holds.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Optional

LOGGER = logging.getLogger(__name__)

# Matches: directive-name=value or directive-name (with optional quotes)
_DIRECTIVE_PATTERN = re.compile(r'([a-zA-Z\-]+)(?:=(["\']?)(\d+|[^,\s"\']+)\2)?')

# RFC 9111 1.2.2: delta-seconds larger than this are treated as this value.
MAX_DELTA_SECONDS = 2**31


@dataclass(frozen=True)
class CacheControlDirective:
    """Parsed Cache-Control directives relevant to the crawler.

    Attributes:
        max_age: Freshness lifetime in seconds (0 = already stale)
    """

    max_age: Optional[int] = None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def parse_cache_control(headers: Mapping[str, str]) -> CacheControlDirective:
    """Parse the Cache-Control header into a :class:`CacheControlDirective`.

    Examples:
        >>> parse_cache_control({"Cache-Control": "public, max-age=300"}).max_age
        300
        >>> parse_cache_control({}).max_age is None
        True
    """
    cc_header = _header(headers, "cache-control")
    if not cc_header:
        return CacheControlDirective()

    kwargs: dict = {}
    for match in _DIRECTIVE_PATTERN.finditer(cc_header):
        directive_name = match.group(1).lower()
        value_str = match.group(3) if match.group(3) else None

        if directive_name == "max-age":
            try:
                kwargs["max_age"] = min(max(0, int(value_str)), MAX_DELTA_SECONDS) if value_str else 0
            except (ValueError, TypeError):
                LOGGER.debug(f"Invalid max-age value: {value_str}")

    return CacheControlDirective(**kwargs)


def parse_expires(headers: Mapping[str, str]) -> Optional[int]:
    """Return the ``Expires`` header as Unix seconds, or ``None`` if absent/invalid."""

    raw = _header(headers, "expires")
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw.strip())
    except (TypeError, ValueError, IndexError) as e:
        LOGGER.debug(f"Failed to parse Expires {raw!r}: {e}")
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def compute_expires_at(
    headers: Mapping[str, str],
    *,
    fetch_sec: int,
    default_expiration_s: int,
) -> int:
    """Expiry for a resource fetched at ``fetch_sec``.

    Precedence, lowest to highest: ``fetch_sec + default_expiration_s``, the
    ``Expires`` header, ``Cache-Control: max-age``.

    Examples:
        >>> compute_expires_at({"Cache-Control": "max-age=60"}, fetch_sec=1000, default_expiration_s=120)
        1060
        >>> compute_expires_at({}, fetch_sec=1000, default_expiration_s=120)
        1120
    """
    expires_at = fetch_sec + default_expiration_s

    expires_header = parse_expires(headers)
    if expires_header is not None:
        expires_at = expires_header

    directive = parse_cache_control(headers)
    if directive.max_age is not None:
        expires_at = fetch_sec + directive.max_age

    return max(fetch_sec, expires_at)


def polling_hint(headers: Mapping[str, str]) -> Optional[int]:
    """Server-suggested polling interval (``max-age``), if the response carries one."""

    return parse_cache_control(headers).max_age
