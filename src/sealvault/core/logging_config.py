"""
SealVault - Structured Logging Configuration

Registry modules log through ``logging.getLogger(__name__)`` and attach an
``event`` name plus operation fields via ``extra``. This module decides where
those records go: one JSON line per record in a rotating file, and either
JSON or plain text on stderr.

Usage:
    from sealvault.core.logging_config import setup_logging

    logger = setup_logging(
        name="sealvault",
        log_file="/var/log/sealvault/registry.json",
        level="INFO",
    )
    logger.info("Envelope claimed", extra={"event": "envelope.claimed", "amount": 500})
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pythonjsonlogger import jsonlogger

JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Registry records as JSON, tagged with the deployment that produced them.

    ``environment`` and ``service`` are constant per formatter. ``level`` and
    ``source`` are derived from the record, and ``extra`` fields such as
    ``event`` or ``amount`` become top-level keys.
    """

    def __init__(
        self,
        environment: Optional[str] = None,
        service_name: str = "sealvault",
        fmt: str = JSON_FORMAT,
    ):
        super().__init__(
            fmt=fmt,
            timestamp=True,
            static_fields={
                "environment": environment or "production",
                "service": service_name,
            },
        )

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname.lower()
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def _file_handler(
    log_file: str,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    handler.setFormatter(formatter)
    return handler


def _build_handlers(
    formatter: logging.Formatter,
    log_file: Optional[str],
    json_console: bool,
    enable_console: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    if enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter if json_console else logging.Formatter(PLAIN_FORMAT))
        handlers.append(console)

    if log_file:
        try:
            handlers.append(_file_handler(log_file, formatter, max_bytes, backup_count))
        except OSError as e:
            logging.getLogger(__name__).warning(
                "Could not open log file %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"},
            )

    return handlers or [logging.NullHandler()]


def setup_logging(
    name: str = "sealvault",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    json_format: bool = True,
    enable_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the ``name`` logger; module loggers below it inherit the handlers.

    Calling this again replaces (and closes) the handlers from the previous
    call. With no console and no usable log file the logger gets a
    ``NullHandler``, so records are dropped instead of reaching the root
    logger's last-resort handler.

    Args:
        name: Logger name; its first dotted component becomes ``service``
        log_file: Rotating JSON log file (optional)
        level: Logging level name
        environment: Value of the ``environment`` field in JSON records
        json_format: JSON on the console instead of plain text
        enable_console: Attach a stderr handler
        max_bytes: File size that triggers rotation
        backup_count: Rotated files kept

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = CustomJsonFormatter(
        environment=environment,
        service_name=name.partition(".")[0],
    )
    for handler in _build_handlers(
        formatter,
        log_file=log_file,
        json_console=json_format,
        enable_console=enable_console,
        max_bytes=max_bytes,
        backup_count=backup_count,
    ):
        logger.addHandler(handler)

    return logger


def setup_registry_logging(settings: Any, environment: str = "production") -> logging.Logger:
    """Configure the ``sealvault`` logger from a ``LoggingConfig`` section."""
    return setup_logging(
        name="sealvault",
        log_file=settings.log_file or None,
        level=settings.level,
        environment=environment,
        json_format=settings.json_format,
        max_bytes=settings.max_log_size,
        backup_count=settings.backup_count,
    )
