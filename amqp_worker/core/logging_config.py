"""
Logging Configuration Module
============================
Structured logging for queue workers.

This module provides:
- JSON lines for log aggregation
- Colourised text for development
- A logger adapter that tags records with the worker and its queue
- Root logger setup driven by ``LoggingConfig``
"""

import logging
import sys
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pathlib import Path
from logging.handlers import RotatingFileHandler

from .config import Config, get_config

# Libraries whose INFO output drowns out worker logs
NOISY_LOGGERS = ("asyncio", "aio_pika", "aiormq")


def _worker_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Worker fields stamped on a record by ``WorkerLogger``."""
    context = {}
    for key in ("worker_id", "destination"):
        value = getattr(record, key, None)
        if value is not None:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Worker context and exception tracebacks become top-level keys.
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.filename}:{record.lineno}",
        }
        if self.include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()
        entry.update(_worker_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text output, coloured by level on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        context = _worker_context(record)
        tags = []
        if "worker_id" in context:
            tags.append(f"worker={context['worker_id']}")
        if "destination" in context:
            tags.append(f"queue={context['destination']}")
        name = record.name + (f" [{', '.join(tags)}]" if tags else "")

        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line = " | ".join([
            created.strftime("%Y-%m-%d %H:%M:%S"),
            level,
            name,
            record.getMessage(),
        ])
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class WorkerLogger(logging.LoggerAdapter):
    """
    Logger adapter that tags every record with ``worker_id`` and ``destination``.

    ``destination`` is mutable so a worker can follow queue reassignment.
    """

    def __init__(
        self,
        logger: logging.Logger,
        worker_id: str,
        destination: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.worker_id = worker_id
        self.destination = destination

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        extra.update(worker_id=self.worker_id, destination=self.destination)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    output: str = "stdout",
    file_path: Optional[str] = None,
    max_file_size: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Log level name
        log_format: ``json`` or ``text``
        output: ``stdout``, ``file`` or ``both``
        file_path: Log file, used when output includes ``file``
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files to keep
    """
    formatter = JSONFormatter() if log_format == "json" else TextFormatter()

    handlers: List[logging.Handler] = []
    if output in ("stdout", "both"):
        handlers.append(logging.StreamHandler(sys.stdout))
    if output in ("file", "both") and file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            file_path,
            maxBytes=max_file_size,
            backupCount=backup_count,
        ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level.upper())
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(config: Optional[Config] = None) -> None:
    """Set up logging from ``config.logging`` (global configuration by default)."""
    settings = (config or get_config()).logging
    setup_logging(
        level=settings.level,
        log_format=settings.format,
        output=settings.output,
        file_path=settings.file_path,
        max_file_size=settings.max_file_size,
        backup_count=settings.backup_count,
    )


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (usually ``__name__``)."""
    return logging.getLogger(name)


def get_worker_logger(
    worker_id: str,
    destination: Optional[str] = None,
    name: Optional[str] = None,
) -> WorkerLogger:
    """
    Return a ``WorkerLogger`` for one worker.

    Args:
        worker_id: Unique worker identifier
        destination: Queue the worker is bound to
        name: Logger name (defaults to ``amqp_worker.worker``)
    """
    return WorkerLogger(logging.getLogger(name or "amqp_worker.worker"), worker_id, destination)
