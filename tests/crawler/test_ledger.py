"""Crawl ledger and known-manifest store."""

from __future__ import annotations

import json

import pytest

from SchedulingLinks.Crawler.errors import ManifestParseError, StorageError
from SchedulingLinks.Crawler.ledger import ManifestFetch, load_manifest_urls
from SchedulingLinks.Crawler.manifest import FileType
from SchedulingLinks.Crawler.states import State

from tests.crawler.conftest import FIXED_NOW

MANIFEST_URL = "https://publisher.example/manifest.json"


def _record(ledger, known_id, *, read_sec=FIXED_NOW, status=200, hint=None, contents="{}"):
    return ledger.record_manifest_fetch(
        url=MANIFEST_URL,
        known_manifest_id=known_id,
        read_sec=read_sec,
        status_code=status,
        polling_hint_sec=hint,
        contents=contents,
    )


class TestKnownManifestStore:
    def test_add_is_idempotent(self, known_manifests) -> None:
        first = known_manifests.add(MANIFEST_URL)
        again = known_manifests.add(f"  {MANIFEST_URL}  ")

        assert first == again
        assert known_manifests.all() == [first]
        assert known_manifests.get(first.known_manifest_id) == first
        assert known_manifests.get(999) is None

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://example.org/m.json", "https://"])
    def test_add_rejects_malformed_urls(self, known_manifests, url) -> None:
        with pytest.raises(ValueError):
            known_manifests.add(url)

    def test_seed_skips_malformed_urls(self, known_manifests, caplog) -> None:
        with caplog.at_level("WARNING"):
            added = known_manifests.seed([MANIFEST_URL, "garbage", "https://other.example/m.json"])

        assert [m.url for m in added] == [MANIFEST_URL, "https://other.example/m.json"]
        assert "garbage" in caplog.text

    def test_load_manifest_urls_ignores_blanks_and_comments(self, tmp_path) -> None:
        path = tmp_path / "manifest_urls"
        path.write_text(
            "# publishers\nhttps://a.example/m.json\n\n  https://b.example/m.json  \n",
            encoding="utf-8",
        )

        assert load_manifest_urls(path) == ["https://a.example/m.json", "https://b.example/m.json"]


class TestManifestFetches:
    def test_last_manifest_fetch_returns_latest(self, ledger, known_manifests) -> None:
        known = known_manifests.add(MANIFEST_URL)
        _record(ledger, known.known_manifest_id, read_sec=FIXED_NOW - 100)
        latest = _record(ledger, known.known_manifest_id, status=503, contents=None)

        assert ledger.last_manifest_fetch(known.known_manifest_id) == latest
        assert ledger.last_manifest_fetch(known.known_manifest_id + 1) is None

    def test_last_manifest_fetch_only_success(self, ledger, known_manifests) -> None:
        known = known_manifests.add(MANIFEST_URL)
        good = _record(ledger, known.known_manifest_id, read_sec=FIXED_NOW - 100)
        _record(ledger, known.known_manifest_id, status=0, contents=None)

        assert ledger.last_manifest_fetch(known.known_manifest_id, only_success=True) == good

    def test_contents_must_match_status(self, ledger, known_manifests) -> None:
        known = known_manifests.add(MANIFEST_URL)

        with pytest.raises(ValueError):
            _record(ledger, known.known_manifest_id, status=500, contents="{}")
        with pytest.raises(ValueError):
            _record(ledger, known.known_manifest_id, status=200, contents=None)
        assert ledger.manifest_fetches() == []

    def test_should_fetch_uses_hint_then_default(self) -> None:
        hinted = ManifestFetch(1, MANIFEST_URL, 1, FIXED_NOW, 200, 60, "{}")
        unhinted = ManifestFetch(2, MANIFEST_URL, 1, FIXED_NOW, 200, None, "{}")

        assert not hinted.should_fetch(FIXED_NOW + 59)
        assert hinted.should_fetch(FIXED_NOW + 60)
        assert not unhinted.should_fetch(FIXED_NOW + 179)
        assert unhinted.should_fetch(FIXED_NOW + 180)
        assert unhinted.should_fetch(FIXED_NOW + 30, default_poll_s=30)

    def test_parse_contents(self) -> None:
        body = json.dumps(
            {"output": [{"type": "Slot", "url": "https://publisher.example/slots.ndjson"}]}
        )
        fetch = ManifestFetch(1, MANIFEST_URL, 1, FIXED_NOW, 200, None, body)

        parsed = fetch.parse_contents()

        assert [o.file_type for o in parsed.outputs] == [FileType.SLOT]

    def test_parse_contents_of_failed_fetch_raises(self) -> None:
        fetch = ManifestFetch(1, MANIFEST_URL, 1, FIXED_NOW, 500, None, None)

        with pytest.raises(ManifestParseError):
            fetch.parse_contents()


class TestLeafFetches:
    def test_leaf_rows_and_jurisdictions(self, ledger, known_manifests) -> None:
        known = known_manifests.add(MANIFEST_URL)
        manifest_fetch = _record(ledger, known.known_manifest_id)

        location = ledger.record_leaf_fetch(
            file_type=FileType.LOCATION,
            url="https://publisher.example/locations.ndjson",
            manifest_fetch_id=manifest_fetch.manifest_fetch_id,
            read_sec=FIXED_NOW,
            status_code=200,
            contents="{}\n",
            states=[State.MA, State.NH],
        )
        slot = ledger.record_leaf_fetch(
            file_type=FileType.SLOT,
            url="https://publisher.example/slots.ndjson",
            manifest_fetch_id=manifest_fetch.manifest_fetch_id,
            read_sec=FIXED_NOW,
            status_code=404,
        )

        leaves = ledger.leaf_fetches(manifest_fetch.manifest_fetch_id)
        assert leaves == [location, slot]
        assert ledger.leaf_fetches(manifest_fetch.manifest_fetch_id, FileType.SLOT) == [slot]
        assert ledger.jurisdictions(FileType.LOCATION, location.leaf_fetch_id) == [State.MA, State.NH]
        assert ledger.jurisdictions(FileType.SLOT, slot.leaf_fetch_id) == []

    def test_leaf_requires_existing_manifest_fetch(self, ledger) -> None:
        with pytest.raises(StorageError):
            ledger.record_leaf_fetch(
                file_type=FileType.SCHEDULE,
                url="https://publisher.example/schedules.ndjson",
                manifest_fetch_id=12345,
                read_sec=FIXED_NOW,
                status_code=200,
                contents="{}",
            )

    def test_unsupported_file_type_has_no_table(self, ledger) -> None:
        with pytest.raises(ValueError):
            ledger.record_leaf_fetch(
                file_type=FileType.UNSUPPORTED,
                url="https://publisher.example/groups.ndjson",
                manifest_fetch_id=1,
                read_sec=FIXED_NOW,
                status_code=200,
                contents="{}",
            )
