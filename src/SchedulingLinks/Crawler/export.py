"""Versioned output snapshots of the latest successful crawl.

``export_snapshot`` writes a standalone SQLite file holding, for every known
manifest, its most recent successful manifest fetch and the successful leaf
fetches linked to it, with jurisdiction join tables. The ``VERSION`` token of
the path template is replaced by the export time in Unix seconds, so snapshots
sort by age; :func:`prune_stale_snapshots` keeps only the newest.

The file is built under a temporary name and renamed into place, so readers
never see a half-written snapshot.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.errors import StorageError
from SchedulingLinks.Crawler.ledger import LEAF_TABLES, CrawlLedger, KnownManifestStore
from SchedulingLinks.Crawler.manifest import FileType
from SchedulingLinks.Crawler.states import state_rows

__all__ = ("SnapshotResult", "export_snapshot", "prune_stale_snapshots", "snapshot_path")

logger = logging.getLogger(__name__)

VERSION_TOKEN = "VERSION"

OUTPUT_SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE manifests(
    manifest_id INTEGER PRIMARY KEY,
    url TEXT NOT NULL,
    contents TEXT NOT NULL
);

CREATE TABLE locations(
    location_id INTEGER PRIMARY KEY,
    url TEXT NOT NULL,
    manifest_id INTEGER NOT NULL REFERENCES manifests(manifest_id) ON DELETE CASCADE,
    contents TEXT NOT NULL
);

CREATE TABLE schedules(
    schedule_id INTEGER PRIMARY KEY,
    url TEXT NOT NULL,
    manifest_id INTEGER NOT NULL REFERENCES manifests(manifest_id) ON DELETE CASCADE,
    contents TEXT NOT NULL
);

CREATE TABLE slots(
    slot_id INTEGER PRIMARY KEY,
    url TEXT NOT NULL,
    manifest_id INTEGER NOT NULL REFERENCES manifests(manifest_id) ON DELETE CASCADE,
    contents TEXT NOT NULL
);

CREATE TABLE states(
    state_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);

CREATE TABLE location_state(
    location_id INTEGER NOT NULL REFERENCES locations(location_id) ON DELETE CASCADE,
    state_id INTEGER NOT NULL REFERENCES states(state_id) ON DELETE CASCADE
);

CREATE TABLE schedule_state(
    schedule_id INTEGER NOT NULL REFERENCES schedules(schedule_id) ON DELETE CASCADE,
    state_id INTEGER NOT NULL REFERENCES states(state_id) ON DELETE CASCADE
);

CREATE TABLE slot_state(
    slot_id INTEGER NOT NULL REFERENCES slots(slot_id) ON DELETE CASCADE,
    state_id INTEGER NOT NULL REFERENCES states(state_id) ON DELETE CASCADE
);
"""

# (table, id column, join table) in the snapshot, per leaf type.
_OUTPUT_TABLES: Dict[FileType, tuple] = {
    FileType.LOCATION: ("locations", "location_id", "location_state"),
    FileType.SCHEDULE: ("schedules", "schedule_id", "schedule_state"),
    FileType.SLOT: ("slots", "slot_id", "slot_state"),
}


@dataclass
class SnapshotResult:
    """Where a snapshot was written and what it holds."""

    path: Path
    manifests: int = 0
    leaves: Dict[str, int] = field(default_factory=dict)


def snapshot_path(template: Union[str, Path], version: int) -> Path:
    template = str(template)
    if VERSION_TOKEN not in template:
        raise ValueError(f"Output template must contain {VERSION_TOKEN}: {template}")
    return Path(template.replace(VERSION_TOKEN, str(int(version))))


def export_snapshot(
    db: CrawlerDatabase,
    template: Union[str, Path],
    *,
    now: Optional[float] = None,
) -> SnapshotResult:
    """Write the latest successful crawl of every known manifest to a new file.

    Raises:
        StorageError: The snapshot could not be written.
    """
    version = int(time.time() if now is None else now)
    target = snapshot_path(template, version)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".part")
    if tmp.exists():
        tmp.unlink()

    ledger = CrawlLedger(db)
    result = SnapshotResult(path=target, leaves={ft.stats_key: 0 for ft in LEAF_TABLES})

    try:
        out = sqlite3.connect(str(tmp))
        try:
            out.executescript(OUTPUT_SCHEMA)
            out.executemany("INSERT INTO states (state_id, name) VALUES (?, ?)", state_rows())
            for known in KnownManifestStore(db).all():
                fetch = ledger.last_manifest_fetch(known.known_manifest_id, only_success=True)
                if fetch is None:
                    logger.info(f"No successful fetch of manifest {known.url} to export")
                    continue
                cursor = out.execute(
                    "INSERT INTO manifests (url, contents) VALUES (?, ?)",
                    (fetch.url, fetch.contents),
                )
                manifest_id = cursor.lastrowid
                result.manifests += 1

                for leaf in ledger.leaf_fetches(fetch.manifest_fetch_id):
                    if leaf.contents is None:
                        continue
                    table, id_column, join_table = _OUTPUT_TABLES[leaf.file_type]
                    cursor = out.execute(
                        f"INSERT INTO {table} (url, manifest_id, contents) VALUES (?, ?, ?)",
                        (leaf.url, manifest_id, leaf.contents),
                    )
                    out.executemany(
                        f"INSERT INTO {join_table} ({id_column}, state_id) VALUES (?, ?)",
                        [
                            (cursor.lastrowid, int(state))
                            for state in ledger.jurisdictions(leaf.file_type, leaf.leaf_fetch_id)
                        ],
                    )
                    result.leaves[leaf.file_type.stats_key] += 1
            out.commit()
        finally:
            out.close()
        os.replace(tmp, target)
    except (sqlite3.Error, OSError) as exc:
        if tmp.exists():
            tmp.unlink()
        raise StorageError(f"Cannot write snapshot {target}: {exc}") from exc

    logger.info(
        f"Output written to {target} ({result.manifests} manifests, "
        + ", ".join(f"{v} {k}" for k, v in sorted(result.leaves.items()))
        + ")"
    )
    return result


def _snapshot_versions(template: Union[str, Path]) -> List[tuple]:
    template = str(template)
    if VERSION_TOKEN not in template:
        raise ValueError(f"Output template must contain {VERSION_TOKEN}: {template}")
    prefix, _, suffix = Path(template).name.partition(VERSION_TOKEN)
    directory = Path(template).parent
    if not directory.is_dir():
        return []

    found = []
    for candidate in directory.iterdir():
        name = candidate.name
        if not (name.startswith(prefix) and name.endswith(suffix)):
            continue
        middle = name[len(prefix) : len(name) - len(suffix)]
        if middle.isdigit():
            found.append((int(middle), candidate))
    return sorted(found)


def prune_stale_snapshots(template: Union[str, Path]) -> List[Path]:
    """Delete every snapshot matching ``template`` except the newest; return what was removed."""

    versions = _snapshot_versions(template)
    removed: List[Path] = []
    for _, path in versions[:-1]:
        path.unlink()
        removed.append(path)
        logger.info(f"Removed stale snapshot {path}")
    return removed
