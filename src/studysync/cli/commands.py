"""CLI commands for studysync.

Commands:
- add: Subscribe to a remote question bank URL
- list / banks: Show sources and their banks
- sync / sync-all: Content syncs
- manifest: Refresh the curated source list
- auto-update / remove: Manage subscriptions
"""

import typer
from rich.console import Console

from studysync.core.errors import (
    DuplicateSourceError,
    SourceNotFoundError,
    SyncCooldownError,
    SyncError,
    SyncInProgressError,
)
from studysync.core.reconciler import ReconcileStats
from studysync.core.sync_orchestrator import SyncOrchestrator, get_orchestrator
from studysync.db.banks_repository import count_questions
from studysync.utils.text_utils import truncate
from studysync.utils.validators import (
    AmbiguousSourceError,
    UnknownSourceError,
    resolve_source_id,
)

app = typer.Typer(
    name="studysync",
    help="Sync remote question banks into the local study database.",
    no_args_is_help=True,
)

console = Console()


def _resolve_source_or_exit(orchestrator: SyncOrchestrator, ref: str) -> int:
    """Resolve an id or name prefix, or exit with a helpful error."""
    sources = orchestrator.list_sources()
    try:
        return resolve_source_id(ref, sources)
    except UnknownSourceError as e:
        console.print(f"[red]✗ {e}[/red]")
        if sources:
            console.print("\nSuscripciones disponibles:")
            for s in sources:
                console.print(f"  - [{s.id}] {s.name}")
        raise typer.Exit(code=1)
    except AmbiguousSourceError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


def _print_stats(stats: ReconcileStats | None) -> None:
    if stats is None:
        return
    console.print(f"  [dim]banks:[/dim]     {len(stats.banks)} (+{stats.banks_created} / -{stats.banks_deleted})")
    console.print(
        f"  [dim]questions:[/dim] +{stats.questions_inserted} "
        f"~{stats.questions_updated} -{stats.questions_deleted} "
        f"={stats.questions_unchanged}"
    )
    if stats.rows_skipped:
        console.print(f"  [yellow]⚠ filas omitidas: {stats.rows_skipped}[/yellow]")
    if stats.deletion_skipped:
        console.print("  [yellow]⚠ descarga parcial: no se eliminaron bancos[/yellow]")


def _fail(e: Exception) -> None:
    console.print(f"[red]✗ {e}[/red]")
    raise typer.Exit(code=1)


@app.command()
def add(
    url: str = typer.Argument(..., help="Source URL (raw file, gist, ...)"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
) -> None:
    """Subscribe to a remote question bank and download it."""
    orchestrator = get_orchestrator()
    console.print(f"[blue]Descargando {url}...[/blue]")

    try:
        source_id = orchestrator.add_source(url, name)
    except DuplicateSourceError as e:
        console.print(f"[yellow]⚠ {e}[/yellow]")
        raise typer.Exit(code=1)
    except SyncError as e:
        _fail(e)

    source = orchestrator.get_source(source_id)
    console.print(f"[green]✓ Suscripción añadida: {source.name}[/green]")
    console.print(f"  [dim]id:[/dim]        {source_id}")
    _print_stats(orchestrator.last_stats.get(source_id))


@app.command(name="list")
def list_sources() -> None:
    """List all subscriptions."""
    orchestrator = get_orchestrator()
    sources = orchestrator.list_sources()

    if not sources:
        console.print("[yellow]No hay suscripciones[/yellow]")
        console.print("  Usa: studysync add <url>")
        return

    console.print(f"\n[bold]Suscripciones ({len(sources)}):[/bold]\n")
    for source in sources:
        flags = []
        if source.is_official:
            flags.append("[cyan]oficial[/cyan]")
        if source.auto_update:
            flags.append("[green]auto[/green]")
        console.print(f"  [bold][{source.id}] {source.name}[/bold] {' '.join(flags)}")
        console.print(f"    [dim]url:[/dim]    {truncate(source.url, 80)}")
        console.print(f"    [dim]synced:[/dim] {source.last_synced_at or '-'}")
        console.print()


@app.command()
def banks(
    source: str = typer.Argument(..., help="Source id or name prefix"),
) -> None:
    """List the banks of a subscription."""
    orchestrator = get_orchestrator()
    source_id = _resolve_source_or_exit(orchestrator, source)

    records = orchestrator.list_banks(source_id)
    if not records:
        console.print("[yellow]Sin bancos[/yellow]")
        return

    for bank in records:
        console.print(f"  [bold]{bank.name}[/bold] [dim]({bank.remote_id})[/dim]")
        console.print(f"    [dim]questions:[/dim] {count_questions(bank.id)}")
        console.print(f"    [dim]updated:[/dim]   {bank.updated_at}")


@app.command()
def sync(
    source: str = typer.Argument(..., help="Source id or name prefix"),
    force: bool = typer.Option(False, "--force", "-f", help="Retry blacklisted mirrors"),
) -> None:
    """Sync one subscription."""
    orchestrator = get_orchestrator()
    source_id = _resolve_source_or_exit(orchestrator, source)

    console.print(f"[blue]Sincronizando suscripción {source_id}...[/blue]")
    try:
        orchestrator.sync_one(source_id, force=force)
    except SyncInProgressError as e:
        console.print(f"[yellow]⚠ {e}[/yellow]")
        raise typer.Exit(code=1)
    except SyncError as e:
        _fail(e)

    console.print("[green]✓ Sincronización completada[/green]")
    _print_stats(orchestrator.last_stats.get(source_id))


@app.command(name="sync-all")
def sync_all(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore cooldown and mirror blacklist"),
    background: bool = typer.Option(
        False, "--background", help="Unattended run: manifest first, respect cooldown"
    ),
) -> None:
    """Sync every subscription with auto-update enabled."""
    orchestrator = get_orchestrator()

    if background:
        count = orchestrator.run_background_sync(force=force)
        if count is None:
            console.print("[dim]Sincronización omitida (en curso o en espera)[/dim]")
            return
        console.print(f"[green]✓ {count} suscripciones sincronizadas[/green]")
        return

    try:
        count = orchestrator.sync_all_auto_update(force=force)
    except SyncInProgressError as e:
        console.print(f"[yellow]⚠ {e}[/yellow]")
        raise typer.Exit(code=1)

    total = len([s for s in orchestrator.list_sources() if s.auto_update])
    console.print(f"[green]✓ {count}/{total} suscripciones sincronizadas[/green]")


@app.command()
def manifest(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore cooldown"),
) -> None:
    """Refresh the curated list of official sources."""
    orchestrator = get_orchestrator()

    try:
        result = orchestrator.sync_manifest(force=force)
    except SyncCooldownError as e:
        console.print(f"[yellow]⚠ {e}[/yellow]")
        raise typer.Exit(code=1)
    except SyncError as e:
        _fail(e)

    if result is None:
        return
    console.print(f"[green]✓ Manifiesto actualizado ({result.via})[/green]")
    console.print(f"  [dim]entries:[/dim]  {len(result.entries)}")
    console.print(f"  [dim]added:[/dim]    {len(result.added)}")
    console.print(f"  [dim]official:[/dim] {len(result.marked_official)}")


@app.command(name="auto-update")
def auto_update(
    source: str = typer.Argument(..., help="Source id or name prefix"),
    enabled: bool = typer.Option(True, "--on/--off", help="Enable or disable auto-update"),
) -> None:
    """Toggle auto-update for a subscription."""
    orchestrator = get_orchestrator()
    source_id = _resolve_source_or_exit(orchestrator, source)

    try:
        orchestrator.set_auto_update(source_id, enabled)
    except SourceNotFoundError as e:
        _fail(e)

    state = "activada" if enabled else "desactivada"
    console.print(f"[green]✓ Actualización automática {state} para {source_id}[/green]")


@app.command()
def remove(
    source: str = typer.Argument(..., help="Source id or name prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a subscription and all its banks."""
    orchestrator = get_orchestrator()
    source_id = _resolve_source_or_exit(orchestrator, source)
    record = orchestrator.get_source(source_id)

    if not yes:
        confirm = typer.confirm(f"¿Eliminar '{record.name}' y todos sus bancos?")
        if not confirm:
            console.print("[dim]Cancelado[/dim]")
            raise typer.Exit(code=0)

    try:
        orchestrator.remove_source(source_id)
    except SyncError as e:
        _fail(e)

    console.print(f"[green]✓ Suscripción eliminada: {record.name}[/green]")
