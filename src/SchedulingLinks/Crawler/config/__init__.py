"""
Crawler Configuration Package

Public API for loading, validating, and introspecting crawler configuration.

Example:
    from SchedulingLinks.Crawler.config import load_config

    config = load_config(
        path="crawler.yaml",
        cli_overrides={"orchestrator": {"max_workers": 4}},
    )
    config_id = config.config_hash()
"""

from .loader import (
    export_config_schema,
    load_config,
    validate_config_file,
)
from .models import (
    CachePolicy,
    CrawlerConfig,
    ExportConfig,
    FetchToggles,
    HttpClientConfig,
    OrchestratorConfig,
    StorageConfig,
)

__all__ = [
    # Models
    "CrawlerConfig",
    "HttpClientConfig",
    "CachePolicy",
    "FetchToggles",
    "StorageConfig",
    "OrchestratorConfig",
    "ExportConfig",
    # Loading/validation
    "load_config",
    "validate_config_file",
    "export_config_schema",
]
