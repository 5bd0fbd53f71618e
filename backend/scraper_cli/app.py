"""Command line interface for the batch scraper."""
from __future__ import annotations

import json
import logging
import signal
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from backend.scraper.db import create_engine_from_settings, init_database
from backend.scraper.schemas import WorkItem
from backend.scraper.service import build_fetch_cache, build_providers, build_scheduler
from backend.scraper.settings import ScraperSettings
from backend.scraper.stores.run_store import ScrapeRunStore

logger = logging.getLogger(__name__)

app = typer.Typer(help="Scrape metadata, artwork and trailers for batches of movies.")
runs_app = typer.Typer(help="Inspect tracked scrape runs.")
app.add_typer(runs_app, name="runs")
cache_app = typer.Typer(help="Manage the fetch cache.")
app.add_typer(cache_app, name="cache")


RUN_STATUS_CHOICES = {"queued", "running", "completed", "failed", "cancelled"}


def _database_option() -> typer.Option:
    return typer.Option(
        None,
        "--database-url",
        help="Database holding the fetch cache and run history.",
        envvar="REELSCRAPE_DATABASE_URL",
    )


def _load_settings(database_url: Optional[str], **overrides: object) -> ScraperSettings:
    payload = {key: value for key, value in overrides.items() if value is not None}
    if database_url:
        payload["database_url"] = database_url
    return ScraperSettings(**payload)


def _load_items(path: Path) -> list[WorkItem]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"Cannot read items from {path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if isinstance(raw, dict) and "items" in raw:
        raw = raw["items"]
    if not isinstance(raw, list):
        typer.echo("Items file must contain a JSON list.", err=True)
        raise typer.Exit(code=1)

    items: list[WorkItem] = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {"name": entry}
        try:
            items.append(WorkItem.model_validate(entry))
        except ValidationError as exc:
            typer.echo(f"Invalid item {entry!r}: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    return items


@app.command()
def scrape(
    items_path: Path = typer.Argument(..., help="JSON list of items (name, external_id, year)."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write scraped items here instead of stdout."
    ),
    concurrency: Optional[int] = typer.Option(None, min=1, help="Number of scrape workers."),
    language: Optional[str] = typer.Option(None, help="Preferred language (ISO 639-1)."),
    country: Optional[str] = typer.Option(None, help="Preferred country (ISO 3166-1)."),
    scrape_foreign_language: Optional[bool] = typer.Option(
        None,
        "--foreign-language/--no-foreign-language",
        help="Use localized title and plot from the enrichment provider.",
        show_default=False,
    ),
    scrape_collection_info: Optional[bool] = typer.Option(
        None,
        "--collection-info/--no-collection-info",
        help="Fetch collection linkage from the enrichment provider.",
        show_default=False,
    ),
    artwork_provider: Optional[List[str]] = typer.Option(
        None, "--artwork-provider", help="Artwork provider order (repeatable)."
    ),
    trailer_provider: Optional[List[str]] = typer.Option(
        None, "--trailer-provider", help="Trailer providers (repeatable)."
    ),
    tmdb_api_key: Optional[str] = typer.Option(None, envvar="REELSCRAPE_TMDB_API_KEY", help="TMDB API key."),
    database_url: Optional[str] = _database_option(),
) -> None:
    """Scrape every item in ITEMS_PATH and emit the updated items as JSON."""

    items = _load_items(items_path)
    settings = _load_settings(database_url, tmdb_api_key=tmdb_api_key)
    options = settings.scrape_options(
        concurrency=concurrency,
        preferred_language=language,
        preferred_country=country,
        scrape_foreign_language=scrape_foreign_language,
        scrape_collection_info=scrape_collection_info,
        artwork_provider_order=artwork_provider or None,
        trailer_provider_order=trailer_provider or None,
    )

    engine = create_engine_from_settings(settings)
    init_database(engine)
    run_store = ScrapeRunStore(engine)
    run = run_store.create(len(items), options=options.model_dump())

    def _report_progress(progress: float, item: WorkItem) -> None:
        run_store.update_progress(run.id, progress)
        typer.echo(f"[scrape] {progress:.0%} {item.name}", err=True)

    cache = build_fetch_cache(settings, engine)
    try:
        scheduler = build_scheduler(
            settings, build_providers(settings, cache), options, progress=_report_progress
        )
    except ValueError as exc:
        cache.close()
        run_store.mark_failed(run.id, error_message=str(exc))
        engine.dispose()
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    previous_handler = signal.getsignal(signal.SIGINT)

    def _cancel(signum: int, frame: object) -> None:
        typer.echo("[scrape] cancelling, waiting for in-flight items", err=True)
        scheduler.cancel()

    signal.signal(signal.SIGINT, _cancel)
    run_store.mark_running(run.id)
    try:
        report = scheduler.run(items)
    except Exception as exc:  # pragma: no cover - scheduler contains item failures
        run_store.mark_failed(run.id, error_message=str(exc))
        raise
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        cache.close()
        engine.dispose()

    run_store.mark_finished(
        run.id,
        cancelled=report.was_cancelled,
        scraped=report.scraped,
        failed=report.failed,
        skipped=report.skipped,
    )

    payload = json.dumps([item.model_dump(mode="json") for item in items], indent=2, ensure_ascii=False)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(payload, encoding="utf-8")
        typer.echo(f"[scrape] wrote {len(items)} items to {output}", err=True)
    else:
        typer.echo(payload)

    typer.echo(
        json.dumps(
            {
                "run_id": run.id,
                "total": report.total,
                "scraped": report.scraped,
                "ambiguous": report.ambiguous,
                "no_match": report.no_match,
                "failed": report.failed,
                "cancelled": report.cancelled,
            },
            ensure_ascii=False,
        ),
        err=True,
    )


@runs_app.command("list")
def list_runs(
    limit: int = typer.Option(20, min=1, max=200, help="Maximum number of runs to show."),
    status: Optional[List[str]] = typer.Option(
        None, "--status", help="Filter by status (repeatable).", show_default=False
    ),
    database_url: Optional[str] = _database_option(),
) -> None:
    """Show the most recent scrape runs."""

    statuses = [value.lower() for value in status or []]
    invalid = sorted(set(statuses) - RUN_STATUS_CHOICES)
    if invalid:
        typer.echo(f"Unknown status value(s): {', '.join(invalid)}", err=True)
        raise typer.Exit(code=1)

    engine = create_engine_from_settings(_load_settings(database_url))
    init_database(engine)
    try:
        runs = ScrapeRunStore(engine).list(limit=limit, statuses=statuses or None)
    finally:
        engine.dispose()
    typer.echo(json.dumps([run.model_dump(mode="json") for run in runs], indent=2, ensure_ascii=False))


@cache_app.command("invalidate")
def invalidate_cache(
    url: str = typer.Argument(..., help="URL whose cached body should be dropped."),
    database_url: Optional[str] = _database_option(),
) -> None:
    """Forget one cached URL so it is fetched again."""

    settings = _load_settings(database_url)
    engine = create_engine_from_settings(settings)
    init_database(engine)
    with build_fetch_cache(settings, engine) as cache:
        removed = cache.invalidate(url)
    engine.dispose()
    typer.echo(json.dumps({"url": url, "removed": removed}))


@cache_app.command("clear")
def clear_cache(database_url: Optional[str] = _database_option()) -> None:
    """Drop every cached response."""

    settings = _load_settings(database_url)
    engine = create_engine_from_settings(settings)
    init_database(engine)
    with build_fetch_cache(settings, engine) as cache:
        removed = cache.clear()
    engine.dispose()
    typer.echo(json.dumps({"removed": removed}))
