"""
Configuration Loading Tests

Tests for file/env/CLI precedence, strict validation and schema export.
"""

import json
import os

import pytest
from pydantic import ValidationError

from SchedulingLinks.Crawler.config import (
    CrawlerConfig,
    export_config_schema,
    load_config,
    validate_config_file,
)
from SchedulingLinks.Crawler.config.loader import env_overrides
from SchedulingLinks.Crawler.fetcher import FetchOptions


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("SLC_"):
            monkeypatch.delenv(key, raising=False)


class TestDefaults:
    """Defaults match the documented crawler behaviour."""

    def test_default_values(self):
        config = load_config()

        assert config.cache.rate_limit_window_s == 90
        assert config.cache.default_expiration_s == 120
        assert config.cache.manifest_poll_default_s == 180
        assert config.orchestrator.max_workers == 1
        assert config.storage.db_path == "state/crawler.sqlite"
        assert config.fetch.to_fetch_options() == FetchOptions()

    def test_http_config_conversion(self):
        http = CrawlerConfig().http.to_http_config()

        assert http.timeout_s == 10.0
        assert http.user_agent


class TestPrecedence:
    """file < env < CLI"""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "crawler.yaml"
        path.write_text("cache:\n  rate_limit_window_s: 30\norchestrator:\n  max_workers: 4\n")

        config = load_config(path)

        assert config.cache.rate_limit_window_s == 30
        assert config.orchestrator.max_workers == 4

    def test_json_file(self, tmp_path):
        path = tmp_path / "crawler.json"
        path.write_text(json.dumps({"fetch": {"skip_cache": True}}))

        assert load_config(path).fetch.skip_cache is True

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "crawler.yaml"
        path.write_text("cache:\n  rate_limit_window_s: 30\n")
        monkeypatch.setenv("SLC_CACHE__RATE_LIMIT_WINDOW_S", "45")
        monkeypatch.setenv("SLC_FETCH__IGNORE_RATE_LIMITING", "true")

        config = load_config(path)

        assert config.cache.rate_limit_window_s == 45
        assert config.fetch.ignore_rate_limiting is True

    def test_cli_overrides_env(self, monkeypatch):
        monkeypatch.setenv("SLC_ORCHESTRATOR__MAX_WORKERS", "2")

        config = load_config(
            cli_overrides={"orchestrator": {"max_workers": 8}, "fetch": {"skip_cache": None}}
        )

        assert config.orchestrator.max_workers == 8
        assert config.fetch.skip_cache is False

    def test_string_env_value(self, monkeypatch):
        monkeypatch.setenv("SLC_STORAGE__DB_PATH", "/var/lib/crawler/state.sqlite")

        assert load_config().storage.db_path == "/var/lib/crawler/state.sqlite"

    def test_non_config_env_is_ignored(self, monkeypatch):
        monkeypatch.setenv("SLC_LOCK_USE_SOFT", "1")
        monkeypatch.setenv("SLC_CONFIG", "crawler.yaml")

        assert load_config() == CrawlerConfig()

    def test_env_overrides_from_mapping(self):
        environ = {
            "SLC_CACHE__RATE_LIMIT_WINDOW_S": "5",
            "SLC_RUN_ID": "nightly",
            "SLC_CACHE__NOPE": "1",
            "SLC_CACHE__RATE_LIMIT_WINDOW_S__X": "1",
            "OTHER": "1",
        }

        assert env_overrides(environ) == {
            "cache": {"rate_limit_window_s": 5},
            "run_id": "nightly",
        }

    def test_numeric_looking_text_stays_text(self, monkeypatch):
        assert env_overrides({"SLC_RUN_ID": "123", "SLC_STORAGE__DB_PATH": "42"}) == {
            "run_id": "123",
            "storage": {"db_path": "42"},
        }

        monkeypatch.setenv("SLC_RUN_ID", "123")
        monkeypatch.setenv("SLC_ORCHESTRATOR__MAX_WORKERS", "3")
        config = load_config()

        assert config.run_id == "123"
        assert config.orchestrator.max_workers == 3


class TestValidation:
    def test_extra_field_forbidden(self):
        with pytest.raises(ValidationError):
            load_config(cli_overrides={"cache": {"window": 5}})

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            load_config(cli_overrides={"orchestrator": {"max_workers": 0}})
        with pytest.raises(ValidationError):
            load_config(cli_overrides={"export": {"output_template": "/tmp/out.sqlite"}})
        with pytest.raises(ValidationError):
            load_config(cli_overrides={"cache": {"rate_limit_window_s": -1}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "crawler.toml"
        path.write_text("x = 1\n")

        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_validate_config_file(self, tmp_path, monkeypatch):
        good = tmp_path / "good.yaml"
        good.write_text("http:\n  timeout_s: 5\n")
        bad = tmp_path / "bad.yaml"
        bad.write_text("- just\n- a list\n")

        assert validate_config_file(good) is True
        with pytest.raises(ValueError):
            validate_config_file(bad)

        monkeypatch.setenv("SLC_HTTP__TIMEOUT_S", "-1")
        assert validate_config_file(good) is True


class TestHashAndSchema:
    def test_hash_ignores_run_id(self):
        a = CrawlerConfig(run_id="a")
        b = CrawlerConfig(run_id="b")
        c = CrawlerConfig(cache={"rate_limit_window_s": 10})

        assert a.config_hash() == b.config_hash()
        assert a.config_hash() != c.config_hash()

    def test_schema_export(self):
        schema = export_config_schema()

        assert "properties" in schema
        assert {"http", "cache", "fetch", "storage", "orchestrator", "export"} <= set(
            schema["properties"]
        )
