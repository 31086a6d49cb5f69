"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from filevendor.core.session import SessionResult
from filevendor.exceptions import (
    CacheIOError,
    ConfigurationError,
    FetchFailedError,
    MalformedIdentityError,
    ManifestError,
    UnknownFileError,
)
from filevendor.models.config import VendorConfig
from filevendor.models.stats import ResolveStats
from filevendor.utils.formatting import format_duration, format_size

# Looked up along the exception's MRO, so subclasses share their parent's hints.
SUGGESTIONS: dict[type[Exception], list[str]] = {
    MalformedIdentityError: [
        "• File paths must look like '<segment>/<file>', e.g. 'recipes/default.rb'.",
    ],
    UnknownFileError: [
        "• The file is not listed in the manifest.",
        "• Check the spelling, lookups are exact and case-sensitive.",
        "• Your manifest may be out of date; refresh it from its source.",
    ],
    FetchFailedError: [
        "• The remote source could not be reached or refused the request.",
        "• Check your internet connection and the file URL in the manifest.",
        "• The previously cached copy, if any, was left untouched.",
    ],
    CacheIOError: [
        "• The cache directory could not be read or written.",
        "• Check free disk space and permissions of the cache directory.",
    ],
    ManifestError: [
        "• The manifest file is not a valid manifest document.",
        "• It must be a JSON object with a 'name' and a 'files' list.",
    ],
    ConfigurationError: [
        "• Check the values in your configuration file.",
        "• Run `filevendor init --force` to write a fresh one.",
    ],
}
DEFAULT_SUGGESTIONS = ["• Run the command with -vv for detailed logs."]


def suggestions_for(error: Exception) -> list[str]:
    for cls in type(error).__mro__:
        if cls in SUGGESTIONS:
            return SUGGESTIONS[cls]
    return DEFAULT_SUGGESTIONS


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_text = Text()
    error_text.append(f"{type(error).__name__}: ", style="bold red")
    error_text.append(str(error))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions_for(error))))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = "\n".join(f"{key} = {value}" for key, value in config_data.items())
    console.print(
        Panel(
            escape(content) or "[dim](defaults)[/dim]",
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: VendorConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Cache Directory:", escape(config.cache_dir))
    table.add_row("Namespace:", config.namespace)
    table.add_row("Checksum:", config.checksum_algorithm)
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row(
        "Fetch Attempts:", f"{config.fetch_attempts} (backoff {config.base_delay}s)"
    )
    table.add_row("Sweep After Sync:", "Yes" if config.sweep else "No")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Configuration is Valid[/bold green]",
            border_style="green",
            expand=False,
        )
    )


def print_resolved_table(result: SessionResult):
    """Lists every resolved logical path with its local path."""
    console = Console()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
    table.add_column("File")
    table.add_column("Local Path", style="dim")
    for logical_path, local_path in sorted(result.resolved.items()):
        table.add_row(escape(logical_path), escape(str(local_path)))
    for logical_path, error in sorted(result.failed.items()):
        table.add_row(
            f"[red]{escape(logical_path)}[/red]", f"[red]{escape(str(error))}[/red]"
        )
    console.print(table)


def print_summary_panel(collection_name: str, stats: ResolveStats):
    """Displays the end-of-session summary."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")

    table.add_row("[green]Fetched[/green]", str(stats.files_fetched))
    table.add_row("[cyan]Up to date[/cyan]", str(stats.files_up_to_date))
    table.add_row("[red]Failed[/red]", str(stats.files_failed))
    table.add_row("[yellow]Swept[/yellow]", str(stats.entries_swept))
    table.add_row("Downloaded", format_size(stats.total_size_fetched))
    table.add_row("Duration", format_duration(stats.elapsed))

    border = "red" if stats.files_failed else "green"
    console.print(
        Panel(
            table,
            title=f"[bold]{escape(collection_name)}[/bold]",
            border_style=border,
            expand=False,
        )
    )
