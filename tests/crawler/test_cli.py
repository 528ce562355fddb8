"""Typer CLI commands."""

from __future__ import annotations

import functools
import json
import os

import pytest
from typer.testing import CliRunner

from SchedulingLinks.Crawler import cli
from SchedulingLinks.Crawler.runner import CrawlRun

MANIFEST_URL = "https://publisher.example/manifest.json"

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("SLC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "state" / "crawler.sqlite")


def test_add_manifest_and_status(db_path) -> None:
    result = runner.invoke(cli.app, ["add-manifest", MANIFEST_URL, "--db", db_path])
    assert result.exit_code == 0, result.output
    assert "Known manifest 1" in result.output

    result = runner.invoke(cli.app, ["status", "--db", db_path])
    assert result.exit_code == 0, result.output
    assert "Known manifests" in result.output


def test_add_manifest_rejects_bad_url(db_path) -> None:
    result = runner.invoke(cli.app, ["add-manifest", "ftp://nope", "--db", db_path])

    assert result.exit_code == 1


def test_seed_from_file(tmp_path, db_path) -> None:
    urls = tmp_path / "manifest_urls"
    urls.write_text(f"# publishers\n{MANIFEST_URL}\nnot a url\nhttps://other.example/m.json\n")

    result = runner.invoke(cli.app, ["seed", str(urls), "--db", db_path])

    assert result.exit_code == 0, result.output
    assert "Registered 2 of 3" in result.output


def test_seed_missing_file(tmp_path, db_path) -> None:
    result = runner.invoke(cli.app, ["seed", str(tmp_path / "missing"), "--db", db_path])

    assert result.exit_code == 1


def test_crawl_json_summary(monkeypatch, publisher, db_path, tmp_path) -> None:
    publisher.json(
        MANIFEST_URL,
        {"output": [{"type": "Slot", "url": "https://publisher.example/slots.ndjson"}]},
    )
    publisher.text("https://publisher.example/slots.ndjson", '{"resourceType":"Slot"}\n')
    monkeypatch.setattr(cli, "CrawlRun", functools.partial(CrawlRun, transport=publisher.transport))
    runner.invoke(cli.app, ["add-manifest", MANIFEST_URL, "--db", db_path])

    config = tmp_path / "crawler.yaml"
    config.write_text(f"export:\n  output_template: {tmp_path / 'out.VERSION.sqlite'}\n")
    result = runner.invoke(
        cli.app,
        ["crawl", "--db", db_path, "--config", str(config), "--json", "--export", "--workers", "2"],
    )

    assert result.exit_code == 0, result.output
    record = json.loads(result.stdout)
    assert record["manifests"] == 1
    assert record["outcomes"] == {"crawled": 1}
    assert record["leaves"] == 1
    assert record["by_type"] == {"manifest": 1, "slot": 1}
    assert record["snapshot"].startswith(str(tmp_path / "out."))


def test_crawl_invalid_config(tmp_path, db_path) -> None:
    config = tmp_path / "crawler.yaml"
    config.write_text("orchestrator:\n  max_workers: 0\n")

    result = runner.invoke(cli.app, ["crawl", "--db", db_path, "--config", str(config)])

    assert result.exit_code == 1


def test_export_with_prune(tmp_path, db_path) -> None:
    old = tmp_path / "out.1.sqlite"
    old.write_text("stale")

    result = runner.invoke(
        cli.app,
        ["export", "--db", db_path, "-o", str(tmp_path / "out.VERSION.sqlite"), "--prune"],
    )

    assert result.exit_code == 0, result.output
    assert not old.exists()
    assert len(list(tmp_path.glob("out.*.sqlite"))) == 1


def test_print_config_raw(monkeypatch) -> None:
    monkeypatch.setenv("SLC_CACHE__RATE_LIMIT_WINDOW_S", "15")

    result = runner.invoke(cli.app, ["print-config", "--raw"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["cache"]["rate_limit_window_s"] == 15


def test_validate_config(tmp_path) -> None:
    good = tmp_path / "good.yaml"
    good.write_text("cache:\n  default_expiration_s: 60\n")
    bad = tmp_path / "bad.yaml"
    bad.write_text("cache:\n  unknown: 1\n")

    assert runner.invoke(cli.app, ["validate-config", str(good)]).exit_code == 0
    assert runner.invoke(cli.app, ["validate-config", str(bad)]).exit_code == 1


def test_schema_command() -> None:
    result = runner.invoke(cli.app, ["schema"])

    assert result.exit_code == 0
    assert "properties" in json.loads(result.stdout)
