"""Manifest document parsing."""

from __future__ import annotations

import json

import pytest

from SchedulingLinks.Crawler.errors import ManifestParseError
from SchedulingLinks.Crawler.manifest import FileType, parse_manifest


def test_parse_manifest_keeps_descriptor_order() -> None:
    body = json.dumps(
        {
            "transactionTime": "2021-03-01T00:00:00Z",
            "request": "https://publisher.example/manifest.json",
            "output": [
                {"type": "Location", "url": "https://p.example/l.ndjson", "extension": {"state": ["MA"]}},
                {"type": "Schedule", "url": "https://p.example/s.ndjson"},
                {"type": "Slot", "url": "https://p.example/slot.ndjson", "extension": {"state": "CA"}},
            ],
        }
    )

    parsed = parse_manifest(body, url="https://publisher.example/manifest.json")

    assert parsed.transaction_time == "2021-03-01T00:00:00Z"
    assert parsed.request == "https://publisher.example/manifest.json"
    assert [o.file_type for o in parsed.outputs] == [FileType.LOCATION, FileType.SCHEDULE, FileType.SLOT]
    assert [o.states for o in parsed.outputs] == [["MA"], [], ["CA"]]
    assert parsed.rejected == []


def test_unknown_types_map_to_unsupported() -> None:
    parsed = parse_manifest(
        json.dumps({"output": [{"type": "location", "url": "https://p.example/x"}, {"type": "Group", "url": "https://p.example/g"}]})
    )

    assert [o.file_type for o in parsed.outputs] == [FileType.UNSUPPORTED, FileType.UNSUPPORTED]
    assert not FileType.UNSUPPORTED.is_supported
    assert FileType.SLOT.stats_key == "slot"


def test_malformed_descriptor_is_rejected_alone() -> None:
    parsed = parse_manifest(
        json.dumps(
            {
                "output": [
                    {"type": "Slot"},
                    "not an object",
                    {"type": "Slot", "url": "   "},
                    {"type": "Slot", "url": "https://p.example/slot.ndjson"},
                ]
            }
        )
    )

    assert [o.url for o in parsed.outputs] == ["https://p.example/slot.ndjson"]
    assert [index for index, _ in parsed.rejected] == [0, 1, 2]


def test_null_extension_means_no_states() -> None:
    parsed = parse_manifest(
        json.dumps({"output": [{"type": "Slot", "url": "https://p.example/slot.ndjson", "extension": None}]})
    )

    assert [o.url for o in parsed.outputs] == ["https://p.example/slot.ndjson"]
    assert parsed.outputs[0].states == []
    assert parsed.rejected == []


def test_missing_output_is_an_empty_manifest() -> None:
    assert parse_manifest("{}").outputs == []
    assert parse_manifest('{"output": null}').outputs == []


@pytest.mark.parametrize("body", ["", "not json", "[]", '"string"', '{"output": {"type": "Slot"}}'])
def test_unusable_documents_raise(body) -> None:
    with pytest.raises(ManifestParseError):
        parse_manifest(body, url="https://publisher.example/manifest.json")
