"""CLI entry point for Oraculum.

Commands:
    oraculum index     — Rebuild the embedding index for the vault
    oraculum related   — Show notes related to a note
    oraculum reindex   — Re-embed one note now
    oraculum watch     — Keep the index in step with vault edits
    oraculum stats     — Show index statistics
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler

from oraculum import __version__

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Any

    from oraculum.config import Settings
    from oraculum.service import RelatedNotesService

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # SDK request logs drown out indexing progress
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load(ctx: click.Context, *, require_key: bool = True) -> Settings:
    from oraculum.config import load_settings

    settings = load_settings(ctx.obj.get("config_path"))
    if require_key and not settings.embedding_api_key:
        console.print(
            f"[red]✗[/red] Embedding API key not set. Set {settings.embedding_api_key_env}."
        )
        sys.exit(1)
    return settings


def _run_with_service(
    settings: Settings,
    action: Callable[[RelatedNotesService], Awaitable[Any]],
) -> Any:
    """Run *action* against a fresh service, mapping known failures to exit 1."""
    from oraculum.indexer.embedder import EmbeddingError
    from oraculum.service import NoteNotFoundError, RelatedNotesService
    from oraculum.vault.security import PathTraversalError

    async def _main() -> Any:
        service = RelatedNotesService.from_settings(settings)
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(_main())
    except (NoteNotFoundError, PathTraversalError) as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    except EmbeddingError as e:
        console.print(f"[red]✗[/red] Embedding failed ({e.provider}): {e}")
        sys.exit(1)


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """Oraculum — related notes for your Obsidian vault."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.option("--full", is_flag=True, help="Discard the index and embed every note again")
@click.pass_context
def index(ctx: click.Context, full: bool) -> None:
    """Rebuild the embedding index for the vault."""
    settings = _load(ctx)

    async def _rebuild(service: RelatedNotesService) -> Any:
        with console.status("Indexing vault..."):
            return await service.rebuild_index(full=full)

    report = _run_with_service(settings, _rebuild)
    console.print(
        f"[green]✓[/green] {report.documents} notes: {report.embedded} embedded,"
        f" {report.removed} removed"
    )
    if report.failed:
        console.print(f"[yellow]![/yellow] {report.failed} notes could not be embedded (see log)")


@cli.command()
@click.argument("note")
@click.option("-k", "--top-k", type=int, default=None, help="Number of related notes to show")
@click.option("--write", is_flag=True, help="Store the result in the note's frontmatter")
@click.pass_context
def related(ctx: click.Context, note: str, top_k: int | None, write: bool) -> None:
    """Show notes related to NOTE (a vault-relative path)."""
    settings = _load(ctx)

    async def _related(service: RelatedNotesService) -> Any:
        with console.status(f"Embedding {note}..."):
            await service.related_notes(note, top_k)
        # The process exits after this, so let the backfill finish and rank
        # against the whole vault rather than whatever was indexed so far
        with console.status("Indexing the rest of the vault..."):
            await service.wait_idle()
        return await service.related_notes(note, top_k, write=write)

    results = _run_with_service(settings, _related)
    if not results:
        console.print("[dim]No related notes yet — is the vault indexed?[/dim]")
        return

    console.print(f"\n[bold]{note}[/bold]")
    for r in results:
        console.print(f"  [cyan]{r.score:.3f}[/cyan]  {r.id}")
    if write:
        console.print(f"\n[green]✓[/green] Linked {len(results)} notes in {note}")


@cli.command()
@click.argument("note")
@click.pass_context
def reindex(ctx: click.Context, note: str) -> None:
    """Re-embed NOTE now."""
    settings = _load(ctx)

    async def _reindex(service: RelatedNotesService) -> Any:
        with console.status(f"Embedding {note}..."):
            return await service.reindex(note)

    entry = _run_with_service(settings, _reindex)
    if entry is None:
        console.print(f"[yellow]![/yellow] {note} was not indexed")
        sys.exit(1)
    console.print(f"[green]✓[/green] Re-indexed {note} ({len(entry.embedding)} dimensions)")


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the vault and keep the index up to date."""
    from oraculum.service import RelatedNotesService
    from oraculum.vault import VaultChangeHandler, VaultDocuments, VaultEventBus, VaultWatcher

    settings = _load(ctx)

    async def _run_watch() -> None:
        service = RelatedNotesService.from_settings(settings)
        bus = VaultEventBus()
        service.subscribe(bus)
        handler = VaultChangeHandler(settings.watch, VaultDocuments(settings.vault), bus)
        watcher = VaultWatcher(settings.vault, on_change=handler.handle_change)

        service.builder.schedule_backfill()
        console.print(f"[green]✓[/green] Watching {settings.vault.path} (Ctrl+C to stop)")
        try:
            await watcher.run_async()
        finally:
            handler.cancel_all()
            await service.close()

    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped watching.[/dim]")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show index statistics."""
    from oraculum.indexer import IndexStore, PluginDataStore
    from oraculum.vault import VaultDocuments

    settings = _load(ctx, require_key=False)
    store = IndexStore(PluginDataStore(settings.index.data_path), settings.index_settings())
    store.load()

    docs = VaultDocuments(settings.vault).list_documents()
    fresh = sum(
        1
        for doc in docs
        if (entry := store.get(doc.id)) is not None and entry.staleness_marker == doc.modified_at
    )

    console.print("[bold]Oraculum Stats[/bold]")
    console.print(f"  Vault:      {settings.vault.path}")
    console.print(f"  Notes:      {len(docs)}")
    console.print(f"  Indexed:    {len(store)}")
    console.print(f"  Up to date: {fresh}")
    console.print(f"  Stale:      {len(docs) - fresh}")
    console.print(f"  Embedding:  {settings.embedding.provider}/{settings.embedding.model}")
    console.print(f"  Data file:  {settings.index.data_path}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
