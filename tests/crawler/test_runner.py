"""End-to-end crawl runs and their summaries."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from rich.console import Console

from SchedulingLinks.Crawler.config import CrawlerConfig
from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.ledger import CrawlLedger, KnownManifestStore
from SchedulingLinks.Crawler.orchestrator import ManifestOutcome
from SchedulingLinks.Crawler.runner import CrawlRun, run
from SchedulingLinks.Crawler.summary import build_summary_record, emit_console_summary

from tests.crawler.conftest import FIXED_NOW

MANIFEST_URL = "https://publisher.example/manifest.json"
BROKEN_URL = "https://broken.example/manifest.json"


@pytest.fixture
def config(tmp_path) -> CrawlerConfig:
    return CrawlerConfig(run_id="run-1", storage={"db_path": str(tmp_path / "crawler.sqlite")})


@pytest.fixture
def seeded(config):
    with CrawlerDatabase(config.storage.db_path) as database:
        KnownManifestStore(database).seed([MANIFEST_URL, BROKEN_URL])


def _publish(publisher) -> None:
    publisher.json(
        MANIFEST_URL,
        {
            "output": [
                {"type": "Slot", "url": "https://publisher.example/slots.ndjson"},
                {"type": "Group", "url": "https://publisher.example/groups.ndjson"},
            ]
        },
        headers={"ETag": '"m1"'},
    )
    publisher.text("https://publisher.example/slots.ndjson", '{"resourceType":"Slot"}\n')
    publisher.text(BROKEN_URL, "oops", status=503)


def test_crawl_run_end_to_end(config, seeded, publisher) -> None:
    _publish(publisher)

    with CrawlRun(config, transport=publisher.transport, clock=lambda: float(FIXED_NOW)) as crawl:
        assert crawl.run_id == "run-1"
        result = crawl.run()
        ledger = CrawlLedger(crawl.db)
        fetches = ledger.manifest_fetches()

    assert crawl.db is None and crawl.client is None
    assert result.outcomes == {
        ManifestOutcome.CRAWLED.value: 1,
        ManifestOutcome.FETCH_FAILED.value: 1,
    }
    assert sorted(f.fetch_status_code for f in fetches) == [200, 503]
    assert result.stats.by_type == {"manifest": 2, "slot": 1}
    assert Path(config.storage.db_path + ".locks").is_dir()


def test_second_run_respects_polling(config, seeded, publisher) -> None:
    _publish(publisher)
    with CrawlRun(config, transport=publisher.transport, clock=lambda: float(FIXED_NOW)) as crawl:
        crawl.run()
    requests_after_first = len(publisher.calls())

    with CrawlRun(config, transport=publisher.transport, clock=lambda: float(FIXED_NOW + 60)) as crawl:
        second = crawl.run()

    assert second.count(ManifestOutcome.NOT_DUE) == 2
    assert len(publisher.calls()) == requests_after_first


def test_run_requires_enter(config) -> None:
    with pytest.raises(RuntimeError):
        CrawlRun(config).run()


def test_run_id_is_generated() -> None:
    assert len(CrawlRun(CrawlerConfig()).run_id) == 32


def test_summary_record_and_console(config, seeded, publisher) -> None:
    _publish(publisher)
    with CrawlRun(config, transport=publisher.transport, clock=lambda: float(FIXED_NOW)) as crawl:
        result = crawl.run()

    record = build_summary_record(result, run_id="run-1")

    assert json.loads(json.dumps(record)) == record
    assert record["manifests"] == 2
    assert record["leaves"] == 1
    assert record["leaf_failures"] == 0
    assert [f["url"] for f in record["failures"]] == [BROKEN_URL]
    assert record["failures"][0]["status"] == "HTTP 503"

    console = Console(record=True, width=120)
    emit_console_summary(result, run_id="run-1", console=console)
    text = console.export_text()
    assert "Crawl finished" in text
    assert "publisher.example" in text
    assert BROKEN_URL in text


def test_one_shot_run_helper(config, seeded, publisher) -> None:
    _publish(publisher)

    result = run(config, transport=publisher.transport)

    assert len(result.manifests) == 2
    assert result.count(ManifestOutcome.CRAWLED) == 1
