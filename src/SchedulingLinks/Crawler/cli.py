"""Typer-based CLI for the crawler with Pydantic v2 configuration."""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from SchedulingLinks.Crawler.config import (
    CrawlerConfig,
    export_config_schema,
    load_config,
    validate_config_file,
)
from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.errors import CrawlerError, describe_status
from SchedulingLinks.Crawler.export import export_snapshot, prune_stale_snapshots
from SchedulingLinks.Crawler.ledger import CrawlLedger, KnownManifestStore, load_manifest_urls
from SchedulingLinks.Crawler.runner import CrawlRun
from SchedulingLinks.Crawler.summary import build_summary_record, emit_console_summary

console = Console()
app = typer.Typer(help="SchedulingLinks manifest crawler")

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file (YAML or JSON)",
    envvar="SLC_CONFIG",
)
DB_OPTION = typer.Option(None, "--db", help="Crawler database path (overrides storage.db_path)")

# ============================================================================
# Setup
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(config: Optional[str], overrides: Optional[Dict[str, Any]] = None) -> CrawlerConfig:
    return load_config(path=config, cli_overrides=overrides)


def _open_db(cfg: CrawlerConfig) -> CrawlerDatabase:
    return CrawlerDatabase(
        cfg.storage.db_path,
        wal_mode=cfg.storage.wal_mode,
        busy_timeout_s=cfg.storage.busy_timeout_s,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]✗ {message}[/red]")
    raise typer.Exit(code=1)


def _format_sec(sec: Optional[int]) -> str:
    if sec is None:
        return "-"
    return datetime.fromtimestamp(sec, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")


# ============================================================================
# Commands
# ============================================================================


@app.command()
def crawl(
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION,
    workers: Optional[int] = typer.Option(None, "--workers", help="Manifests crawled in parallel"),
    force: bool = typer.Option(False, "--force", help="Ignore manifest polling hints"),
    skip_cache: bool = typer.Option(False, "--skip-cache", help="Bypass the resource cache"),
    ignore_rate_limiting: bool = typer.Option(
        False, "--ignore-rate-limiting", help="Fetch even inside the rate-limit window"
    ),
    no_if_none_match: bool = typer.Option(
        False, "--no-if-none-match", help="Never send If-None-Match"
    ),
    no_if_modified_since: bool = typer.Option(
        False, "--no-if-modified-since", help="Never send If-Modified-Since"
    ),
    no_cache_write: bool = typer.Option(False, "--no-cache-write", help="Never write the cache"),
    export: bool = typer.Option(False, "--export", help="Write an output snapshot afterwards"),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Crawl every due known manifest once."""
    _setup_logging(verbose)

    fetch_overrides = {
        "skip_cache": skip_cache or None,
        "ignore_rate_limiting": ignore_rate_limiting or None,
        "suppress_if_none_match": no_if_none_match or None,
        "suppress_if_modified_since": no_if_modified_since or None,
        "suppress_cache_write": no_cache_write or None,
    }
    overrides: Dict[str, Any] = {
        "storage": {"db_path": db},
        "orchestrator": {"max_workers": workers},
        "fetch": fetch_overrides,
    }

    try:
        cfg = _load(config, overrides)
        with CrawlRun(cfg) as crawl_run:
            result = crawl_run.run(force=force)
            snapshot = None
            if export:
                snapshot = export_snapshot(crawl_run.db, cfg.export.output_template)
    except (CrawlerError, ValueError, OSError) as e:
        _fail(f"Error: {e}")

    if as_json:
        record = build_summary_record(result, run_id=crawl_run.run_id)
        if snapshot is not None:
            record["snapshot"] = str(snapshot.path)
        typer.echo(json.dumps(record, indent=2))
        return

    emit_console_summary(result, run_id=crawl_run.run_id, console=console)
    if snapshot is not None:
        console.print(f"[green]✓ Output written to {snapshot.path}[/green]")


@app.command()
def status(
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION,
) -> None:
    """Show known manifests with their last fetch and next due time."""
    try:
        cfg = _load(config, {"storage": {"db_path": db}})
        with _open_db(cfg) as database:
            ledger = CrawlLedger(database)
            now = time.time()
            table = Table(title="Known manifests")
            table.add_column("ID", style="cyan", justify="right")
            table.add_column("URL", style="green")
            table.add_column("Last read")
            table.add_column("Status")
            table.add_column("Next due")
            table.add_column("Due now", style="magenta")
            for known in KnownManifestStore(database).all():
                last = ledger.last_manifest_fetch(known.known_manifest_id)
                if last is None:
                    table.add_row(str(known.known_manifest_id), known.url, "-", "-", "-", "yes")
                    continue
                poll_s = cfg.cache.manifest_poll_default_s
                table.add_row(
                    str(known.known_manifest_id),
                    known.url,
                    _format_sec(last.read_sec),
                    describe_status(last.fetch_status_code),
                    _format_sec(last.next_fetch_sec(poll_s)),
                    "yes" if last.should_fetch(now, poll_s) else "no",
                )
    except (CrawlerError, ValueError, OSError) as e:
        _fail(f"Error: {e}")
    console.print(table)


@app.command("add-manifest")
def add_manifest(
    url: str = typer.Argument(..., help="Manifest URL"),
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION,
) -> None:
    """Register a known manifest URL."""
    try:
        cfg = _load(config, {"storage": {"db_path": db}})
        with _open_db(cfg) as database:
            known = KnownManifestStore(database).add(url)
    except (CrawlerError, ValueError, OSError) as e:
        _fail(f"Error: {e}")
    console.print(f"[green]✓ Known manifest {known.known_manifest_id}: {known.url}[/green]")


@app.command()
def seed(
    path: str = typer.Argument(..., help="File with one manifest URL per line"),
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION,
) -> None:
    """Register every manifest URL listed in a file."""
    try:
        cfg = _load(config, {"storage": {"db_path": db}})
        urls = load_manifest_urls(path)
        with _open_db(cfg) as database:
            added = KnownManifestStore(database).seed(urls)
    except (CrawlerError, ValueError, OSError) as e:
        _fail(f"Error: {e}")
    console.print(f"[green]✓ Registered {len(added)} of {len(urls)} manifest URLs[/green]")


@app.command("export")
def export_cmd(
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION,
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output template; VERSION becomes the Unix epoch"
    ),
    prune: bool = typer.Option(False, "--prune", help="Delete older snapshots afterwards"),
) -> None:
    """Write the latest successful crawl to a versioned snapshot database."""
    try:
        cfg = _load(
            config,
            {"storage": {"db_path": db}, "export": {"output_template": output}},
        )
        with _open_db(cfg) as database:
            snapshot = export_snapshot(database, cfg.export.output_template)
        removed = prune_stale_snapshots(cfg.export.output_template) if prune else []
    except (CrawlerError, ValueError, OSError) as e:
        _fail(f"Error: {e}")

    leaves = ", ".join(f"{k}: {v}" for k, v in sorted(snapshot.leaves.items()))
    console.print(
        Panel(
            f"[bold green]✓ Snapshot written[/bold green]\n"
            f"Path: {snapshot.path}\n"
            f"Manifests: {snapshot.manifests}\n"
            f"Leaves: {leaves}\n"
            f"Pruned: {len(removed)}",
            title="Export",
        )
    )


@app.command()
def print_config(
    config: Optional[str] = CONFIG_OPTION,
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Print merged effective config."""
    try:
        cfg = _load(config)
    except ValueError as e:
        _fail(f"Error: {e}")

    data = cfg.model_dump(mode="json")
    if raw:
        typer.echo(json.dumps(data, indent=2))
    else:
        console.print(Panel(json.dumps(data, indent=2), title="Crawler Config", expand=False))


@app.command()
def validate_config(
    config: str = typer.Argument(..., help="Path to config file"),
) -> None:
    """Validate a config file."""
    try:
        validate_config_file(config)
    except ValueError as e:
        _fail(f"Invalid: {e}")
    console.print("[green]✓ Config valid[/green]")


@app.command()
def schema() -> None:
    """Print the config JSON schema."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
