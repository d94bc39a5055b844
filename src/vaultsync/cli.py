"""CLI entry point for VaultSync.

Commands:
    vaultsync watch     — Watch the vault and print external changes
    vaultsync attach    — Store a file as a note attachment
    vaultsync resolve   — Print a note file with ![[...]] references resolved
    vaultsync filename  — Print a freshly generated attachment filename
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler

from vaultsync import __version__

if TYPE_CHECKING:
    from vaultsync.config import Settings
    from vaultsync.vault import AttachmentManager, ExternalChangeEvent

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _require_vault(settings: Settings) -> str:
    """Return the configured vault path, symlinks resolved, or exit with a hint.

    Native watchers report resolved paths, so the vault root must be
    resolved too for event paths to classify under it.
    """
    vault_path = settings.vault.path
    if not vault_path or not Path(vault_path).is_dir():
        console.print(
            "[red]✗[/red] Vault path not set or missing. Set VAULTSYNC_VAULT__PATH or use --vault."
        )
        sys.exit(1)
    return str(Path(vault_path).resolve())


def _load(ctx: click.Context) -> Settings:
    from vaultsync.config import load_settings

    settings = load_settings(ctx.obj.get("config_path"))
    if ctx.obj.get("vault"):
        settings.vault.path = ctx.obj["vault"]
    return settings


def _create_attachment_manager(settings: Settings) -> AttachmentManager:
    from vaultsync.vault import AttachmentManager, IdMap, WatchdogBridge

    vault_path = _require_vault(settings)
    id_map_path = settings.id_map_path
    assert id_map_path is not None
    return AttachmentManager(
        vault_path=vault_path,
        id_map=IdMap.load(id_map_path),
        bridge=WatchdogBridge(url_scheme=settings.attachments.url_scheme),
        config=settings.attachments,
    )


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.option("--vault", type=click.Path(file_okay=False), help="Override the vault path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None, vault: str | None) -> None:
    """VaultSync — keep a notes vault and the app in step."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["vault"] = str(Path(vault).expanduser().resolve()) if vault else None


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the vault for external changes until interrupted."""
    from vaultsync.vault import FileWatcherService, VaultWatchController, WatchdogBridge

    settings = _load(ctx)
    vault_path = _require_vault(settings)

    bridge = WatchdogBridge(url_scheme=settings.attachments.url_scheme)
    watcher = FileWatcherService(
        bridge,
        config=settings.watch,
        config_dir=settings.vault.config_dir,
        assets_dir=settings.attachments.assets_dir,
    )

    def _print_change(event: ExternalChangeEvent) -> None:
        stamp = datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S")
        console.print(f"[dim]{stamp}[/dim] [cyan]{event.kind}[/cyan] {event.item_type}: {event.path}")

    controller = VaultWatchController(
        watcher,
        on_change=_print_change,
        recent_limit=settings.watch.recent_changes_limit,
    )

    async def _run_watch() -> None:
        await controller.update(vault_path, enabled=settings.watch.enabled)
        if not controller.is_watching:
            reason = controller.error or "watching disabled"
            console.print(f"[red]✗[/red] Not watching: {reason}")
            return
        console.print(f"[green]✓[/green] Watching {vault_path}")
        console.print(f"  Debounce: {settings.watch.debounce_ms}ms")
        try:
            while True:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await controller.close()

    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Watcher stopped.[/yellow]")


@cli.command()
@click.argument("note_id")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Store under this filename (overwrites)")
@click.pass_context
def attach(ctx: click.Context, note_id: str, file: Path, name: str | None) -> None:
    """Store FILE as an attachment of NOTE_ID."""
    from vaultsync.vault import AttachmentIOError, NoteNotFoundError, PathTraversalError
    from vaultsync.vault.assets import content_type_for

    settings = _load(ctx)
    manager = _create_attachment_manager(settings)

    content_type = content_type_for(file.name)
    try:
        result = asyncio.run(
            manager.save_attachment(note_id, file.read_bytes(), name, content_type=content_type)
        )
    except (AttachmentIOError, NoteNotFoundError, PathTraversalError) as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Saved {result.filename} ({result.bytes_written} bytes)")
    console.print(f"  embed: ![[{result.filename}]]")
    console.print(f"  url:   {result.url}")


@cli.command()
@click.argument("note_id")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def resolve(ctx: click.Context, note_id: str, file: Path) -> None:
    """Print FILE with NOTE_ID's attachment references resolved to URLs."""
    settings = _load(ctx)
    manager = _create_attachment_manager(settings)
    content = file.read_text(encoding="utf-8")
    click.echo(manager.resolve_images_in_content(content, note_id), nl=False)


@cli.command()
@click.option("--hint", default=None, help="Original filename to derive the name from")
@click.option("--ext", "extension", default=None, help="Extension without dot")
def filename(hint: str | None, extension: str | None) -> None:
    """Print a new, unique attachment filename."""
    from vaultsync.vault import generate_attachment_filename

    click.echo(generate_attachment_filename(hint, extension))
