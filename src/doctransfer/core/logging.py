"""
Logging utilities for the transfer engine.

Provides structured logging with run context (run_id, operation, database)
so every line emitted during one export/import/sync can be traced back to
its run. Context travels with an explicit LoggerAdapter handed to the
orchestrator rather than through module-level state.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

CONTEXT_FIELDS = ("run_id", "operation", "database", "collection")


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Run context fields if present (run_id, operation, database, collection)
    - Exception text if present
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with run context.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [run_id=X operation=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for name in ("run_id", "operation"):
            value = getattr(record, name, None)
            if value is not None:
                context_parts.append(f"{name}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


class RunContext(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the run's context.

    Example:
        >>> log = RunContext(logging.getLogger(__name__), operation="export", database="shop")
        >>> log.info("Connected")  # record carries run_id, operation, database
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        database: Optional[str] = None,
        run_id: Optional[str] = None,
    ):
        context = {
            "run_id": run_id or uuid.uuid4().hex[:12],
            "operation": operation,
            "database": database,
        }
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    @property
    def run_id(self) -> str:
        return self.extra["run_id"]

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def for_collection(self, collection: str) -> "RunContext":
        """Derive an adapter that also carries the collection name."""
        child = RunContext(
            self.logger,
            operation=self.extra["operation"],
            database=self.extra.get("database"),
            run_id=self.run_id,
        )
        child.extra["collection"] = collection
        return child


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    include_timestamp: bool = True,
    structured: bool = False,
) -> None:
    """
    Configure logging for the doctransfer package.

    Args:
        level: Logging level (default: INFO)
        format_string: Custom format string (optional, ignored if structured=True)
        include_timestamp: Whether to include timestamp in log messages
        structured: If True, output JSON-structured logs; if False, human-readable
    """
    package_logger = logging.getLogger("doctransfer")
    package_logger.setLevel(level)

    # Only add handler if none exist (avoid duplicate handlers)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)

        if structured:
            formatter = StructuredFormatter(include_timestamp=include_timestamp)
        elif format_string:
            formatter = logging.Formatter(format_string)
        else:
            formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

        handler.setFormatter(formatter)
        package_logger.addHandler(handler)


def context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the run context fields present on a log record."""
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
