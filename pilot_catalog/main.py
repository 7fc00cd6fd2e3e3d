"""
Command line entry point for the catalog cache invalidation service.

Runs the HTTP API or a single invalidation cycle, and inspects or
recovers the staged invalidation queue.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cache.client import ValkeyClient
from .cache.config import ValkeyConfig, ValkeyConnectionError
from .cache.evictor import CacheEvictor
from .cache.keys import CacheEndpoint
from .cache.store import ValkeyKeyStore
from .database.config import DatabaseConfig
from .errors import InvalidationError
from .models.enums import EntityKind, InvalidationMode
from .models.invalidation import ChangeRecord, CycleResult
from .services.batch_queue import BatchQueue
from .services.due_sources import QueueDueSource, WatermarkDueSource
from .services.locale_expander import LocaleExpander
from .services.orchestrator import InvalidationOrchestrator
from .services.pattern_trigger import PatternTriggerService
from .utils.config import AppConfig, load_config

logger = logging.getLogger(__name__)

app = typer.Typer(help="Parts catalog cache invalidation")
console = Console()


def _configure(env_file: Optional[str]) -> AppConfig:
    try:
        config = load_config(env_file)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=2)
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _database(config: AppConfig) -> DatabaseConfig:
    db_config = DatabaseConfig(config.database_url)
    db_config.initialize()
    return db_config


@asynccontextmanager
async def _key_store():
    async with ValkeyClient(ValkeyConfig.from_env()) as client:
        yield ValkeyKeyStore(client)


def _orchestrator(config, db_config, store, source, queue=None) -> InvalidationOrchestrator:
    return InvalidationOrchestrator(
        source=source,
        session_factory=db_config.get_session,
        evictor=CacheEvictor(store),
        expander=LocaleExpander(config.supported_locales),
        listing_depth=config.listing_depth,
        max_hops=config.supersession_max_hops,
        queue=queue,
    )


def print_cycle_result(result: CycleResult) -> None:
    """Render a cycle outcome and exit non-zero on failure."""
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Target", result.target)
    table.add_row("Entities", str(result.entities))
    table.add_row("Patterns", str(result.patterns))
    table.add_row("Deleted", str(result.deleted))
    table.add_row("Committed", "yes" if result.committed else "no")
    if result.batch_id:
        table.add_row("Batch", result.batch_id)
    console.print(table)

    if result.error is None:
        console.print(f"[green]✓ {result.summary}[/green]")
        return

    stage = result.error.stage.value if result.error.stage else "unknown"
    hint = "retry later" if result.error.retryable else "fix the request"
    console.print(Panel(
        f"[red]{result.summary}[/red]\n[dim]{result.error.kind} at {stage}; {hint}[/dim]",
        title="[bold red]Cycle failed[/bold red]",
        border_style="red",
    ))
    raise typer.Exit(code=75 if result.error.retryable else 1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default: API_PORT)"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """Serve the cache administration API."""
    import uvicorn

    from .api.app import create_app

    config = _configure(env_file)
    uvicorn.run(
        create_app(config),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower(),
    )


@app.command("run-cycle")
def run_cycle(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1, help="Due rows per tracked table"),
    lookback_minutes: Optional[int] = typer.Option(
        None, "--lookback-minutes", min=1, help="Only consider changes this recent"
    ),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """Run one invalidation cycle in the configured mode."""
    config = _configure(env_file)
    db_config = _database(config)

    async def _run() -> CycleResult:
        async with _key_store() as store:
            if config.invalidation_mode is InvalidationMode.STAGED:
                queue = BatchQueue(db_config.get_session)
                source = QueueDueSource(queue, claim_limit=limit or config.claim_limit)
                return await _orchestrator(config, db_config, store, source, queue).run_cycle()
            source = WatermarkDueSource(
                db_config.get_session,
                limit=limit or config.watermark_limit,
                lookback=timedelta(minutes=lookback_minutes) if lookback_minutes else None,
            )
            return await _orchestrator(config, db_config, store, source).run_cycle()

    try:
        result = asyncio.run(_run())
    except ValkeyConnectionError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=75)
    finally:
        db_config.close()
    print_cycle_result(result)


@app.command()
def stage(
    kind: EntityKind = typer.Option(..., "--kind", "-k", help="Changed entity kind"),
    entity_ids: List[int] = typer.Argument(..., help="Changed entity ids"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """Stage invalidation patterns for changed entities."""
    config = _configure(env_file)
    db_config = _database(config)
    queue = BatchQueue(db_config.get_session)
    orchestrator = InvalidationOrchestrator(
        source=QueueDueSource(queue),
        session_factory=db_config.get_session,
        evictor=None,
        expander=LocaleExpander(config.supported_locales),
        listing_depth=config.listing_depth,
        max_hops=config.supersession_max_hops,
        queue=queue,
    )
    try:
        result = orchestrator.stage_changes(
            ChangeRecord(kind=kind, entity_id=entity_id) for entity_id in entity_ids
        )
    except InvalidationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=75 if e.retryable else 1)
    finally:
        db_config.close()

    console.print(
        f"[green]✓ Staged {result.enqueued} pattern(s) for {len(result.entity_refs)} "
        f"of {result.entities} entities[/green]"
    )


@app.command()
def batches(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """List claimed batches of the staged queue."""
    config = _configure(env_file)
    db_config = _database(config)
    queue = BatchQueue(db_config.get_session)
    try:
        in_flight = queue.in_flight()
        pending = queue.pending_count()
    finally:
        db_config.close()

    table = Table(title="In-flight batches", box=box.ROUNDED)
    table.add_column("Batch", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Claimed at", style="yellow")
    for info in in_flight:
        claimed = info.claimed_at.isoformat(sep=" ", timespec="seconds") if info.claimed_at else "-"
        table.add_row(info.batch_id, str(info.entries), claimed)
    console.print(table)
    console.print(f"[cyan]Queue Status:[/cyan] {pending} unclaimed row(s)")


@app.command()
def release(
    batch_id: Optional[str] = typer.Argument(None, help="Batch to release"),
    stale: bool = typer.Option(
        False, "--stale", help="Release every batch older than STALE_BATCH_MINUTES"
    ),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """Return stuck batches to the unclaimed pool."""
    if batch_id is None and not stale:
        console.print("[red]✗ Give a batch id or --stale[/red]")
        raise typer.Exit(code=2)

    config = _configure(env_file)
    db_config = _database(config)
    queue = BatchQueue(db_config.get_session)
    try:
        if stale:
            released = queue.release_stale(timedelta(minutes=config.stale_batch_minutes))
            console.print(f"[green]✓ Released {len(released)} stale batch(es)[/green]")
            for released_id in released:
                console.print(f"[dim]  → {released_id}[/dim]")
        else:
            rows = queue.release(batch_id)
            console.print(f"[green]✓ Released {rows} row(s) of batch {batch_id}[/green]")
    except InvalidationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=75)
    finally:
        db_config.close()


@app.command()
def keys(
    language_id: str = typer.Argument(..., help="Locale code"),
    endpoint: CacheEndpoint = typer.Argument(..., help="Cached endpoint"),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Selector substring filter"),
    delete: bool = typer.Option(False, "--delete", help="Evict the matching keys"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
):
    """List or evict one endpoint's cached responses."""
    config = _configure(env_file)

    async def _run():
        async with _key_store() as store:
            trigger = PatternTriggerService(store, CacheEvictor(store), config.supported_locales)
            if delete:
                return await trigger.delete_keys(endpoint.value, language_id, pattern)
            return await trigger.list_keys(endpoint.value, language_id, pattern)

    try:
        outcome = asyncio.run(_run())
    except ValkeyConnectionError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=75)
    except InvalidationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=75 if e.retryable else 1)

    if delete:
        console.print(f"[green]✓ {outcome} key(s) deleted[/green]")
        return
    for key in outcome:
        console.print(f"[yellow]{key}[/yellow]")
    console.print(f"[dim]{len(outcome)} key(s)[/dim]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
