"""
The orchestrator for resolving many files of a manifest in one session.
"""

import asyncio
import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from filevendor.exceptions import FileVendorError
from filevendor.models.stats import ResolveStats
from filevendor.storage.cache import CacheKey, FileCacheStore
from filevendor.storage.validity import ValidCacheEntries
from filevendor.utils.structured_logger import ResolveLogger

from .resolver import Resolver

log = logging.getLogger(__name__)


@dataclass
class SessionResult:
    """Resolved paths and per-path errors of a session."""

    resolved: dict[str, Path] = field(default_factory=dict)
    failed: dict[str, FileVendorError] = field(default_factory=dict)
    swept: list[CacheKey] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ResolveSession:
    """
    Resolves a batch of logical paths with a bounded number of concurrent
    fetches, then optionally sweeps the entries nobody asked for.
    """

    def __init__(
        self,
        resolver: Resolver,
        store: FileCacheStore,
        tracker: ValidCacheEntries,
        max_workers: int = 8,
        sweep: bool = False,
        events: ResolveLogger | None = None,
        history_dir: Path | None = None,
    ):
        self.resolver = resolver
        self.store = store
        self.tracker = tracker
        self.sweep_after = sweep
        self.events = events
        self.history_dir = history_dir
        self.stats = ResolveStats()
        self.semaphore = asyncio.Semaphore(max_workers)

    async def _resolve_one(self, logical_path: str, result: SessionResult) -> None:
        async with self.semaphore:
            try:
                resolution = await self.resolver.resolve_detailed(logical_path)
            except FileVendorError as e:
                self.stats.record_failure()
                result.failed[logical_path] = e
                log.error(
                    f"  [red]✗ Failed:[/] {escape(logical_path)} ({escape(str(e))})"
                )
                return

        result.resolved[logical_path] = resolution.path
        if resolution.fetched:
            self.stats.record_fetch(resolution.size)
            log.info(f"  [green]✓ Fetched:[/] {escape(logical_path)}")
        else:
            self.stats.record_hit()
            log.debug(f"  [dim]○ Up to date:[/] {escape(logical_path)}")

    async def resolve_all(self, logical_paths: Iterable[str]) -> SessionResult:
        """
        Resolves every path, collecting errors per path instead of stopping at
        the first failure.
        """
        unique_paths = list(dict.fromkeys(logical_paths))
        result = SessionResult()
        if not unique_paths:
            log.info("No files requested. Nothing to do.")
            return result

        # Siblings run to completion before an unexpected error is re-raised.
        outcomes = await asyncio.gather(
            *(self._resolve_one(p, result) for p in unique_paths),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return result

    async def sync(self) -> SessionResult:
        """Resolves every file of the manifest and sweeps afterwards if enabled."""
        manifest = self.resolver.manifest
        log.info(
            f"Synchronizing {len(manifest)} files of "
            f"[cyan]{escape(manifest.collection_name)}[/cyan]"
        )
        result = await self.resolve_all(manifest)
        if self.sweep_after:
            # Failed files were marked too, so their previous copies survive.
            result.swept = await self.sweep()
        self._finish()
        return result

    async def sweep(self) -> list[CacheKey]:
        """Removes cache entries of this collection that were not used."""
        collection = self.resolver.collection_name
        removed = await self.tracker.sweep(self.store, collection)
        self.stats.entries_swept += len(removed)
        if self.events:
            self.events.sweep_completed(collection, len(removed))
        return removed

    def _finish(self) -> None:
        if self.events:
            self.events.session_completed(
                self.resolver.collection_name, **self.stats.as_dict()
            )

    def save_session_stats(self) -> None:
        """Appends the session's stats to a history file."""
        if self.history_dir is None:
            return
        stats_file = self.history_dir / "session_history.jsonl"
        try:
            self.history_dir.mkdir(parents=True, exist_ok=True)
            with open(stats_file, "a", encoding="utf-8") as f:
                session_data = {
                    "timestamp": int(time.time()),
                    "collection": self.resolver.collection_name,
                    **self.stats.as_dict(),
                }
                json.dump(session_data, f)
                f.write("\n")
        except OSError as e:
            log.warning(f"[yellow]Could not save session stats:[/] {e}")
