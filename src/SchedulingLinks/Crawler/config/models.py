"""
Pydantic v2 Configuration Models for the crawler

Provides strict, typed configuration for every crawler subsystem:
- HTTP client settings (User-Agent, timeout, TLS, redirects)
- Cache and rate-limit windows
- Per-run fetch toggles
- Storage (SQLite path, WAL, lock timeouts)
- Orchestrator concurrency
- Output snapshot export
- Top-level CrawlerConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import hashlib
import json
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from SchedulingLinks.Crawler.fetcher import FetchOptions
from SchedulingLinks.Crawler.http_session import DEFAULT_USER_AGENT, HttpConfig

# ============================================================================
# Subsystem Models
# ============================================================================


class HttpClientConfig(BaseModel):
    """HTTP client settings for publisher requests."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    timeout_s: float = Field(default=10.0, description="Per-request timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    follow_redirects: bool = Field(default=True, description="Follow 3xx redirects")
    max_connections: int = Field(default=20, description="Connection pool size")

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_s must be > 0")
        return v

    @field_validator("max_connections")
    @classmethod
    def validate_pool(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_connections must be >= 1")
        return v

    def to_http_config(self) -> HttpConfig:
        return HttpConfig(
            user_agent=self.user_agent,
            timeout_s=self.timeout_s,
            verify_tls=self.verify_tls,
            follow_redirects=self.follow_redirects,
            max_connections=self.max_connections,
        )


class CachePolicy(BaseModel):
    """Freshness and rate-limit windows."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    rate_limit_window_s: int = Field(
        default=90, description="Minimum seconds between network attempts per URL"
    )
    default_expiration_s: int = Field(
        default=120, description="Expiry offset when no Expires/max-age is sent"
    )
    manifest_poll_default_s: int = Field(
        default=180, description="Manifest re-poll interval when no polling hint is known"
    )

    @field_validator("rate_limit_window_s", "default_expiration_s", "manifest_poll_default_s")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Must be >= 0")
        return v


class FetchToggles(BaseModel):
    """Independent switches applied to every fetch of a run."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    skip_cache: bool = Field(default=False, description="Bypass the cache read")
    ignore_rate_limiting: bool = Field(default=False, description="Ignore the rate-limit window")
    suppress_if_none_match: bool = Field(default=False, description="Never send If-None-Match")
    suppress_if_modified_since: bool = Field(
        default=False, description="Never send If-Modified-Since"
    )
    suppress_cache_write: bool = Field(default=False, description="Never write the cache")

    def to_fetch_options(self) -> FetchOptions:
        return FetchOptions(**self.model_dump())


class StorageConfig(BaseModel):
    """Crawler database location and locking."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    db_path: str = Field(default="state/crawler.sqlite", description="SQLite database path")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal")
    busy_timeout_s: float = Field(default=30.0, description="SQLite busy timeout")
    lock_timeout_s: float = Field(default=30.0, description="Per-URL lock acquisition timeout")

    @field_validator("busy_timeout_s", "lock_timeout_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v


class OrchestratorConfig(BaseModel):
    """Run-level concurrency."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_workers: int = Field(default=1, description="Manifests crawled concurrently")

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be >= 1")
        return v


class ExportConfig(BaseModel):
    """Output snapshot export."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    output_template: str = Field(
        default="/tmp/crawler_output.VERSION.sqlite",
        description="Snapshot path; VERSION is replaced by the Unix epoch",
    )

    @field_validator("output_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if "VERSION" not in v:
            raise ValueError("output_template must contain VERSION")
        return v


# ============================================================================
# Top-Level Config
# ============================================================================


class CrawlerConfig(BaseModel):
    """
    Single source of truth for crawler configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    run_id: Optional[str] = Field(
        default=None, description="Unique run identifier for traceability"
    )
    http: HttpClientConfig = Field(
        default_factory=HttpClientConfig, description="HTTP client configuration"
    )
    cache: CachePolicy = Field(default_factory=CachePolicy, description="Cache/rate-limit policy")
    fetch: FetchToggles = Field(default_factory=FetchToggles, description="Fetch toggles")
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Storage configuration"
    )
    orchestrator: OrchestratorConfig = Field(
        default_factory=OrchestratorConfig, description="Orchestrator configuration"
    )
    export: ExportConfig = Field(default_factory=ExportConfig, description="Snapshot export")

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        ``run_id`` is excluded so two runs with the same settings share a hash.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        payload = self.model_dump(mode="json", exclude={"run_id"})
        normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
