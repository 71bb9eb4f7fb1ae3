"""atrios-sync CLI - inspect and drive the local-first sync layer."""

import asyncio
import json
import logging
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .store.kinds import EntityKind

app = typer.Typer(
    name="atrios-sync",
    help="Atrios local cache and remote mirror tools",
    no_args_is_help=True,
)
console = Console()

cache_app = typer.Typer(help="Local cache inspection")
outbox_app = typer.Typer(help="Queued remote pushes")

app.add_typer(cache_app, name="cache")
app.add_typer(outbox_app, name="outbox")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _output_result(result: Any, json_output: bool = False) -> None:
    """Output result as JSON or a key/value table."""
    if json_output or not isinstance(result, dict):
        console.print_json(json.dumps(result, default=str))
        return
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in result.items():
        table.add_row(key, str(value))
    console.print(table)


def _service():
    from .service import SyncService

    try:
        return SyncService()
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _local_service():
    """Service for commands that only read the cache (no remote needed)."""
    from .config import settings
    from .database import build_engine, build_session_factory, create_tables
    from .store.cache_store import LocalCacheStore
    from .sync.outbox import Outbox

    engine = build_engine(settings.cache_database_url)
    create_tables(engine)
    factory = build_session_factory(engine)
    return LocalCacheStore(factory), Outbox(factory, max_attempts=settings.push_max_attempts)


def _parse_kind(value: str) -> EntityKind:
    try:
        return EntityKind.parse(value)
    except ValueError:
        valid = ", ".join(k.value for k in EntityKind)
        console.print(f"[red]Unknown kind '{value}'.[/red] Choose one of: {valid}")
        raise typer.Exit(1)


# ============================================================================
# Hydration
# ============================================================================


@app.command("hydrate")
def hydrate(
    tenant_id: str = typer.Argument(..., help="Account id to pull"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Pull one tenant's Account, Records and Messages into the cache."""
    service = _service()

    async def _run():
        async with service:
            return await service.hydrate(tenant_id)

    result = asyncio.run(_run())
    _output_result(result.model_dump(), json_output)
    if not result.complete:
        raise typer.Exit(1)


# ============================================================================
# Cache
# ============================================================================


@cache_app.command("show")
def cache_show(
    kind: str = typer.Argument(..., help="accounts, records, messages, transactions, coupons, notifications"),
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Only this tenant's entities"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List cached entities of one kind."""
    entity_kind = _parse_kind(kind)
    store, _ = _local_service()
    entities = store.read(entity_kind)
    if tenant and entity_kind.tenant_field:
        entities = [e for e in entities if entity_kind.tenant_of(e) == tenant]

    if json_output:
        console.print_json(json.dumps(entities, default=str))
        return

    table = Table(title=f"Cached {entity_kind.value} ({len(entities)})")
    table.add_column("ID", style="cyan")
    table.add_column("Tenant", style="yellow")
    table.add_column("Fields")
    for entity in entities:
        tenant_value = entity_kind.tenant_of(entity) if entity_kind.tenant_field else "-"
        table.add_row(entity["id"], str(tenant_value), str(len(entity)))
    console.print(table)


# ============================================================================
# Outbox
# ============================================================================


@outbox_app.command("list")
def outbox_list(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show pushes waiting for the remote."""
    _, outbox = _local_service()
    items = outbox.list_items()

    if json_output:
        console.print_json(json.dumps([
            {
                "kind": item.kind,
                "entity_id": item.entity_id,
                "operation": item.operation,
                "status": item.status,
                "attempts": item.attempts,
                "available_at": item.available_at,
                "error": item.error_message,
            }
            for item in items
        ], default=str))
        return

    if not items:
        console.print("[green]Outbox is empty.[/green]")
        return

    table = Table(title="Outbox")
    table.add_column("Kind", style="cyan")
    table.add_column("Entity")
    table.add_column("Op")
    table.add_column("Status", style="yellow")
    table.add_column("Attempts", justify="right")
    table.add_column("Last error", style="dim")
    for item in items:
        table.add_row(
            item.kind,
            item.entity_id,
            item.operation,
            item.status,
            f"{item.attempts}/{item.max_attempts}",
            item.error_message or "",
        )
    console.print(table)


@outbox_app.command("drain")
def outbox_drain(
    retry_failed: bool = typer.Option(False, "--retry-failed", help="Re-arm items that gave up"),
):
    """Deliver every due push now."""
    service = _service()

    async def _run():
        async with service:
            if retry_failed:
                service.outbox.reset_failed()
            return await service.relay.drain_once(limit=1000)

    result = asyncio.run(_run())
    _output_result(result.model_dump())
    if result.retrying or result.failed:
        raise typer.Exit(1)


# ============================================================================
# Watch
# ============================================================================


@app.command("watch")
def watch(
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Watch one tenant's session"),
    admin: bool = typer.Option(False, "--admin", help="Watch every tenant (operator console)"),
    seconds: Optional[float] = typer.Option(None, "--seconds", "-s", help="Stop after N seconds"),
):
    """Keep the cache converged and print every merged change."""
    if bool(tenant) == admin:
        console.print("[red]Pass exactly one of --tenant or --admin.[/red]")
        raise typer.Exit(1)

    service = _service()

    def _print_change(change):
        console.print(
            f"[cyan]{change.kind.value}[/cyan] {change.entity.get('id')} "
            f"[yellow]{change.outcome.value}[/yellow]"
        )
        if change.flag_raised("canEditSensitiveData"):
            console.print("  [green]sensitive-data editing unlocked[/green]")
        if change.flag_raised("unlockRequested"):
            console.print("  [magenta]unlock requested[/magenta]")

    async def _run():
        async with service:
            session_watch = service.watch_admin(_print_change) if admin else service.watch_tenant(tenant, _print_change)
            async with session_watch:
                if seconds is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(seconds)
            return session_watch.passes

    console.print(f"[dim]Watching {'all tenants' if admin else tenant}... Ctrl+C to stop.[/dim]")
    try:
        passes = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
        return
    console.print(f"[dim]{passes} reconciliation pass(es).[/dim]")


if __name__ == "__main__":
    app()
