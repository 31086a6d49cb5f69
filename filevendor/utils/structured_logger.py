"""
Structured logging for resolution events.

Every event goes to the regular `filevendor.events` logger as a
``[event] key=value`` line. With JSON output enabled, the same event is also
appended as one JSON object per line to a file in the log directory.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class JsonLinesFormatter(logging.Formatter):
    """Renders records carrying an `event` attribute as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "event": getattr(record, "event", record.getMessage()),
        }
        entry.update(getattr(record, "context", {}))
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Emits named events with keyword context.

    Usage:
        logger = StructuredLogger("filevendor.events", log_dir=Path("logs"))
        logger.info("file_fetched", collection="apache2", size_bytes=1024)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
    ):
        self._logger = logging.getLogger(name)
        self._json_logger: logging.Logger | None = None
        self._json_handler: logging.FileHandler | None = None
        self.json_log_path: Path | None = None
        self.session_id = f"{int(time.time())}_{id(self):x}"

        if enable_json and log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"events_{stamp}.jsonl"
            self._json_handler = logging.FileHandler(
                self.json_log_path, mode="a", encoding="utf-8"
            )
            self._json_handler.setFormatter(JsonLinesFormatter())
            # Per-session logger, kept off the console handlers.
            self._json_logger = logging.getLogger(f"{name}.json.{self.session_id}")
            self._json_logger.setLevel(logging.DEBUG)
            self._json_logger.propagate = False
            self._json_logger.addHandler(self._json_handler)

    @property
    def json_enabled(self) -> bool:
        return self._json_logger is not None

    def log(self, level: int, event: str, **context: Any) -> None:
        details = " ".join(f"{key}={value}" for key, value in context.items())
        self._logger.log(
            level, f"[{event}] {details}".rstrip(), extra={"markup": False}
        )
        if self._json_logger is not None:
            self._json_logger.log(
                level,
                event,
                extra={
                    "event": event,
                    "context": {"session_id": self.session_id, **context},
                },
            )

    def debug(self, event: str, **context: Any) -> None:
        self.log(logging.DEBUG, event, **context)

    def info(self, event: str, **context: Any) -> None:
        self.log(logging.INFO, event, **context)

    def warning(self, event: str, **context: Any) -> None:
        self.log(logging.WARNING, event, **context)

    def error(self, event: str, **context: Any) -> None:
        self.log(logging.ERROR, event, **context)

    def close(self) -> None:
        if self._json_logger is not None and self._json_handler is not None:
            self._json_logger.removeHandler(self._json_handler)
            self._json_handler.close()
            self._json_logger = None

    def __enter__(self) -> "StructuredLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class ResolveLogger:
    """The events a resolver and its session report."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def file_up_to_date(self, logical_path: str, cache_key: str, checksum: str):
        self.logger.debug(
            "file_up_to_date",
            logical_path=logical_path,
            cache_key=cache_key,
            checksum=checksum,
        )

    def file_fetched(
        self,
        logical_path: str,
        cache_key: str,
        url: str,
        size_bytes: int,
        previous_checksum: str | None,
    ):
        self.logger.info(
            "file_fetched",
            logical_path=logical_path,
            cache_key=cache_key,
            url=url,
            size_bytes=size_bytes,
            previous_checksum=previous_checksum,
        )

    def fetch_failed(self, logical_path: str, cache_key: str, url: str, error: str):
        self.logger.error(
            "fetch_failed",
            logical_path=logical_path,
            cache_key=cache_key,
            url=url,
            error=error,
        )

    def sweep_completed(self, collection_name: str | None, removed: int):
        self.logger.info(
            "sweep_completed", collection=collection_name, entries_removed=removed
        )

    def session_completed(self, collection_name: str, **counters):
        self.logger.info("session_completed", collection=collection_name, **counters)


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, ResolveLogger]:
    """
    Create the structured loggers.

    Returns:
        Tuple of (base_logger, resolve_logger)
    """
    base = StructuredLogger("filevendor.events", log_dir=log_dir, enable_json=enable_json)
    return base, ResolveLogger(base)
