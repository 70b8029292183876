"""Logging configuration for test drivers using corecommander.

Supports two formats:
- text: Human-readable for local runs
- json: One object per line for CI log collection

The library never configures logging on import; drivers call setup_logging().
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import json as jsonlogger

from corecommander.config import LoggingConfig

# Extra keys emitted on every JSON line, null when absent
PROMOTED_FIELDS = ("event", "node")


class CommanderJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter for node lifecycle logs.

    Every line carries `timestamp`, `level`, `logger` and `service`, plus the
    lifecycle `event` and `node` name (null when the record has none). Other
    `extra` keys (pid, exit_code, step, ...) pass through unchanged.
    """

    def __init__(self, config: LoggingConfig, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service = config.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self._service
        for field in PROMOTED_FIELDS:
            log_record[field] = getattr(record, field, None)


class EventTextFormatter(logging.Formatter):
    """Text formatter that appends `[event node]` when a record carries them."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        values = (getattr(record, field, None) for field in PROMOTED_FIELDS)
        tags = [str(value) for value in values if value]
        return f"{line} [{' '.join(tags)}]" if tags else line


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging for a test driver.

    Args:
        config: Logging configuration settings.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter: logging.Formatter = CommanderJsonFormatter(config)
    else:
        formatter = EventTextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Diagnostics requests would otherwise log every call
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
