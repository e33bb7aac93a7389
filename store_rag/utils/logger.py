"""
Logging configuration and utilities.

Structured logging for the knowledge pipeline: structlog on top of the standard
library, rendered as JSON in deployed environments and as readable console
lines during development.
"""

import sys
import logging
import json
from typing import Any
from pathlib import Path
from datetime import datetime
import structlog
from structlog.typing import FilteringBoundLogger

from store_rag.config.settings import settings


def setup_logging() -> None:
    """
    Configure structlog and the root logger from the current settings.

    Installs a stdout handler (and a file handler when ``LOG_FILE`` is set)
    using the JSON or text formatter selected by ``LOG_FORMAT``.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if settings.log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(getattr(logging, settings.log_level))
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_file_path = Path(settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(getattr(logging, settings.log_level))
        root_logger.addHandler(file_handler)

    # aiohttp and the vendor SDKs are chatty at INFO
    for noisy in ("aiohttp.access", "urllib3", "httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


_RESERVED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "taskName",
}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for stdlib records.

    structlog output arrives already rendered in ``msg``; records emitted by
    third-party libraries are wrapped in the same envelope so log shipping
    sees one format.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def get_logger(name: str, **context: Any) -> FilteringBoundLogger:
    """
    Get a structured logger instance with optional bound context.

    Args:
        name: Logger name (typically __name__)
        **context: Key/value pairs included in every event from this logger

    Examples:
        >>> logger = get_logger(__name__, component="namespace_indexer")
        >>> logger.info("Indexing started", store_id="123")
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


# Initialize logging on module import
setup_logging()
