"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from filevendor import __version__
from filevendor.core.resolver import Resolver
from filevendor.core.session import ResolveSession
from filevendor.exceptions import FileVendorError
from filevendor.media.downloader import Downloader
from filevendor.media.integrity import ChecksumComparator
from filevendor.models.config import VendorConfig
from filevendor.models.manifest import Manifest, load_manifest
from filevendor.storage.cache import FileCacheStore
from filevendor.storage.config_manager import ConfigManager
from filevendor.storage.validity import ValidCacheEntries
from filevendor.utils.structured_logger import create_structured_logger

from .formatters import (
    format_error_with_suggestions,
    print_config,
    print_resolved_table,
    print_summary_panel,
    print_validation_table,
)

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("filevendor")

app = typer.Typer(
    name="filevendor",
    help=(
        "Serve the files of a manifest from a checksum-validated local cache,"
        " fetching stale files from their remote source."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "filevendor"


def get_cache_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("LOCALAPPDATA", "~\\AppData\\Local"))
    else:
        base_dir = Path(os.getenv("XDG_CACHE_HOME", "~/.cache"))
    return base_dir.expanduser() / "filevendor"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _config_manager() -> ConfigManager:
    return ConfigManager(CONFIG_FILE, default_cache_dir=get_cache_dir())


def _load_config(cli_options: dict) -> VendorConfig:
    options = {key: value for key, value in cli_options.items() if value is not None}
    return _config_manager().load_config(options)


def _load_manifest_or_exit(manifest_path: Path) -> Manifest:
    try:
        return load_manifest(manifest_path)
    except FileVendorError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


@asynccontextmanager
async def open_session(
    config: VendorConfig, manifest: Manifest
) -> AsyncIterator[ResolveSession]:
    """Wires the store, downloader, tracker and resolver for one manifest."""
    store = FileCacheStore(Path(config.cache_dir), config.namespace)
    tracker = ValidCacheEntries()
    log_dir = Path(config.config_path) / "logs" if config.json_log else None
    base_logger, events = create_structured_logger(log_dir, enable_json=config.json_log)

    downloader = Downloader(
        staging_dir=store.staging_dir,
        max_attempts=config.fetch_attempts,
        base_delay=config.base_delay,
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        max_workers=config.max_workers,
    )
    try:
        async with downloader:
            resolver = Resolver(
                manifest,
                store,
                downloader,
                tracker,
                checksum=ChecksumComparator(config.checksum_algorithm),
                events=events,
            )
            yield ResolveSession(
                resolver,
                store,
                tracker,
                max_workers=config.max_workers,
                sweep=config.sweep,
                events=events,
                history_dir=Path(config.config_path),
            )
    finally:
        base_logger.close()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """filevendor: manifest-driven file cache"""
    if version:
        console.print(f"[bold]filevendor[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    logging.getLogger("filevendor").setLevel(log_level)

    if show_config:
        print_config(CONFIG_FILE, _config_manager().get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Directory holding cached files."
    ),
    checksum_algorithm: str = typer.Option(
        "md5", "--checksum", help="Checksum algorithm used by your manifests."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Write a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "cache_dir": str(cache_dir or get_cache_dir()),
        "checksum_algorithm": checksum_algorithm,
    }
    try:
        _config_manager().save_new_config(settings)
    except FileVendorError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")


@app.command(name="resolve")
def resolve_command(
    manifest_path: Path = typer.Argument(..., help="Path to a JSON manifest."),
    files: list[str] = typer.Argument(  # noqa: B008
        ..., help="Logical paths to resolve, e.g. recipes/default.rb."
    ),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Override the cache directory."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous fetches."
    ),
):
    """Resolve files of a manifest and print their local paths."""
    config = _load_config(
        {
            "cache_dir": str(cache_dir) if cache_dir else None,
            "max_workers": workers,
        }
    )
    manifest = _load_manifest_or_exit(manifest_path)

    async def _resolve_async():
        async with open_session(config, manifest) as session:
            return await session.resolve_all(files)

    result = asyncio.run(_resolve_async())
    for logical_path, local_path in result.resolved.items():
        console.print(f"{escape(logical_path)} -> {escape(str(local_path))}")
    for error in result.failed.values():
        console.print(format_error_with_suggestions(error))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command(name="sync")
def sync_command(
    manifest_path: Path = typer.Argument(..., help="Path to a JSON manifest."),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Override the cache directory."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous fetches."
    ),
    sweep: bool | None = typer.Option(
        None,
        "--sweep/--no-sweep",
        help="Remove cached files of this collection that the manifest no longer lists.",
    ),
    show_paths: bool = typer.Option(
        False, "--paths", help="List the local path of every file."
    ),
):
    """Bring the cache up to date with every file of a manifest."""
    config = _load_config(
        {
            "cache_dir": str(cache_dir) if cache_dir else None,
            "max_workers": workers,
            "sweep": sweep,
        }
    )
    manifest = _load_manifest_or_exit(manifest_path)

    async def _sync_async():
        async with open_session(config, manifest) as session:
            result = await session.sync()
            session.save_session_stats()
            return session, result

    session, result = asyncio.run(_sync_async())
    if show_paths:
        print_resolved_table(result)
    print_summary_panel(manifest.collection_name, session.stats)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command(name="sweep")
def sweep_command(
    manifest_path: Path = typer.Argument(..., help="Path to a JSON manifest."),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", help="Override the cache directory."
    ),
):
    """Remove cached files of a collection that its manifest does not list."""
    config = _load_config({"cache_dir": str(cache_dir) if cache_dir else None})
    manifest = _load_manifest_or_exit(manifest_path)

    async def _sweep_async():
        store = FileCacheStore(Path(config.cache_dir), config.namespace)
        tracker = ValidCacheEntries()
        for record in manifest.records:
            tracker.mark_valid(
                store.key_for(manifest.collection_name, record.storage_path)
            )
        return await tracker.sweep(store, manifest.collection_name)

    removed = asyncio.run(_sweep_async())
    for key in removed:
        console.print(f"[dim]removed {escape(str(key))}[/dim]")
    console.print(f"[green]✓ Removed {len(removed)} unused cache entries.[/green]")


@app.command(name="clear-cache")
def clear_cache(
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Remove every cached file."""
    config = _load_config({})
    if not force and not typer.confirm(
        f"Remove every cached file under '{config.cache_dir}'?"
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    store = FileCacheStore(Path(config.cache_dir), config.namespace)
    console.print("[cyan]Clearing cache...[/cyan]")
    removed = asyncio.run(store.clear())
    console.print(f"[green]✓ Cache cleared successfully ({removed} entries removed).[/green]")


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = _config_manager().load_config()
        print_validation_table(config)
    except FileVendorError as e:
        console.print(f"[red]✗ Configuration is invalid: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
