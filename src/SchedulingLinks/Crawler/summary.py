"""Run summary builders and console reporting helpers.

Responsibilities
----------------
- Assemble a structured summary payload via :func:`build_summary_record`,
  ready to be dumped as JSON by the CLI or attached to logs.
- Expose :func:`emit_console_summary` to render the same information as
  ``rich`` tables: manifest outcomes, crawled resources by type and by host,
  and the run duration.

Design Notes
------------
- The console renderer mirrors the record layout so the JSON output and the
  tables carry the same information.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

from SchedulingLinks.Crawler.errors import describe_status
from SchedulingLinks.Crawler.orchestrator import CrawlRunResult

__all__ = [
    "build_summary_record",
    "emit_console_summary",
]


def build_summary_record(result: CrawlRunResult, *, run_id: Optional[str] = None) -> Dict[str, Any]:
    """Assemble the structured run summary record."""

    stats = result.stats.as_dict()
    return {
        "run_id": run_id,
        "duration_s": stats["duration_s"],
        "manifests": len(result.manifests),
        "outcomes": result.outcomes,
        "leaves": result.leaf_count,
        "leaf_failures": result.leaf_failures,
        "by_type": stats["by_type"],
        "by_host": stats["by_host"],
        "failures": [
            {
                "url": m.url,
                "outcome": m.outcome.value,
                "status": describe_status(m.status_code) if m.status_code is not None else None,
                "error": m.error,
            }
            for m in result.manifests
            if m.error
        ],
    }


def emit_console_summary(
    result: CrawlRunResult,
    *,
    run_id: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    """Pretty-print the run summary."""

    console = console or Console()
    record = build_summary_record(result, run_id=run_id)

    duration = record["duration_s"]
    console.print(
        f"\n[bold]Crawl finished[/bold] in {duration:.2f}s: "
        if duration is not None
        else "\n[bold]Crawl finished[/bold]: ",
        end="",
    )
    console.print(
        f"{record['manifests']} manifests, {record['leaves']} leaves "
        f"({record['leaf_failures']} failed)"
    )

    outcomes = Table(title="Manifests")
    outcomes.add_column("Outcome", style="cyan")
    outcomes.add_column("Count", justify="right")
    for outcome, count in sorted(record["outcomes"].items()):
        outcomes.add_row(outcome, str(count))
    console.print(outcomes)

    by_type = Table(title="Crawled resources by type")
    by_type.add_column("Type", style="cyan")
    by_type.add_column("Count", justify="right")
    for key, count in record["by_type"].items():
        by_type.add_row(key, str(count))
    console.print(by_type)

    by_host = Table(title="Crawled resources by host")
    by_host.add_column("Host", style="cyan")
    by_host.add_column("Count", justify="right")
    for key, count in record["by_host"].items():
        by_host.add_row(key, str(count))
    console.print(by_host)

    for failure in record["failures"]:
        console.print(f"[yellow]{failure['outcome']}[/yellow] {failure['url']}: {failure['error']}")
