# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.http_session",
#   "purpose": "HTTPX client factory with User-Agent, bounded timeouts and connection pooling",
#   "sections": [
#     {"id": "httpconfig", "name": "HttpConfig", "anchor": "class-httpconfig", "kind": "class"},
#     {"id": "create-http-client", "name": "create_http_client", "anchor": "function-create-http-client", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""HTTP client factory for publisher requests.

**Purpose**
-----------
Builds the HTTPX client every fetch goes through, with:
- The crawler's User-Agent
- A bounded timeout, so a hung publisher fails instead of blocking the run
- Connection pooling shared by all workers of a run
- Redirect following (publishers move manifests behind CDNs)

Tests pass ``transport=httpx.MockTransport(...)`` to stand in for publishers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "SchedulingLinks-Crawler/0.1"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP configuration passed from top-level config."""

    user_agent: str = DEFAULT_USER_AGENT
    """User-Agent sent with every request."""

    timeout_s: float = 10.0
    """Timeout applied to connect, read, write and pool acquisition."""

    verify_tls: bool = True
    """Verify TLS certificates."""

    follow_redirects: bool = True
    """Follow 3xx redirects to the final resource."""

    max_connections: int = 20
    """Max pool size (total connections)."""


def create_http_client(
    config: HttpConfig | None = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Create the HTTPX client used for a crawl run.

    **Parameters**

        config : HttpConfig, optional
            Timeouts, User-Agent and TLS settings. Defaults when omitted.
        transport : httpx.BaseTransport, optional
            Custom transport (e.g. ``httpx.MockTransport`` in tests).

    **Returns**

        httpx.Client
            Client with the crawler's User-Agent and a bounded timeout.
            The caller owns it and must close it.
    """
    cfg = config or HttpConfig()

    client = httpx.Client(
        timeout=httpx.Timeout(cfg.timeout_s),
        verify=cfg.verify_tls,
        headers={"User-Agent": cfg.user_agent},
        follow_redirects=cfg.follow_redirects,
        limits=httpx.Limits(max_connections=cfg.max_connections),
        transport=transport,
    )

    LOGGER.debug(
        f"HTTP client created: UA={cfg.user_agent}, timeout={cfg.timeout_s}s, "
        f"pool_size={cfg.max_connections}"
    )
    return client
