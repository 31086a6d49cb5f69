"""
Circuit breaker guarding remote hosts against repeated failing fetches.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from filevendor.exceptions import FileVendorError

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing if the host recovered


class CircuitOpenError(FileVendorError):
    """Raised when a fetch is refused because the circuit is open."""


class CircuitBreaker:
    """
    Stops hammering a remote host after consecutive failures.

    States:
    - CLOSED: requests pass through
    - OPEN: too many failures, requests are refused until `recovery_timeout`
    - HALF_OPEN: requests pass through; `success_threshold` successes close
      the circuit again, a single failure reopens it
    """

    def __init__(
        self,
        name: str = "remote",
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = self._clock() - self._opened_at
        if elapsed >= self.recovery_timeout:
            log.info(
                f"[yellow]Circuit for {self.name} is HALF_OPEN "
                f"(testing recovery after {elapsed:.0f}s)[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ Circuit for {self.name} closed.[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]✗ Circuit for {self.name} OPENED after "
                    f"{self._failure_count} consecutive failures. "
                    f"Fetches blocked for {self.recovery_timeout:.0f}s.[/red]"
                )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                self._failure_count = 0
                self._success_count = 0

    async def check(self) -> None:
        """Raises `CircuitOpenError` if calls are currently refused."""
        async with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise CircuitOpenError(
                    f"Circuit for {self.name} is open. Will try to recover after "
                    f"{self.recovery_timeout:.0f} seconds."
                )

    async def __aenter__(self) -> "CircuitBreaker":
        await self.check()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.record_success()
        elif not issubclass(exc_type, asyncio.CancelledError):
            await self.record_failure()
        return False
