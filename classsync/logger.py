"""
Structured JSON Logging.

Every component logs under the ``classsync`` namespace
(``classsync.auth``, ``classsync.notifications``, ...).  Handlers live on
the namespace root and are configured once from :class:`AppConfig`;
child loggers propagate to them, so the rotating log file has a single
writer no matter how many components ask for a logger.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

ROOT_LOGGER_NAME: str = "classsync"

_root_configured: bool = False
_root_lock: threading.Lock = threading.Lock()


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: ``timestamp`` (UTC), ``level``, ``logger_name``, ``message``,
    plus ``thread`` for records emitted off the main thread (the
    notification poller), ``extra`` for caller-supplied fields and
    ``exception`` for tracebacks.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }
        if record.threadName and record.threadName != "MainThread":
            entry["thread"] = record.threadName

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra_fields:
            entry["extra"] = extra_fields

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        # Audit details may carry enums or datetimes.
        return json.dumps(entry, ensure_ascii=False, default=str)


def _qualify(name: str) -> str:
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


def _attach_handlers(
    target: logging.Logger,
    stream: TextIO,
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> None:
    formatter = JSONFormatter()

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setFormatter(formatter)
    target.addHandler(stream_handler)

    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as exc:
        target.warning(
            "Could not open log file '%s': %s. Logging to console only.",
            log_file,
            exc,
        )
        return
    file_handler.setFormatter(formatter)
    target.addHandler(file_handler)


def _configure_root(level: int) -> None:
    global _root_configured
    if _root_configured:
        return
    with _root_lock:
        if _root_configured:
            return
        # Lazy import: config logs through the standard logging module.
        from classsync.config import get_config
        cfg = get_config()

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        if not root.handlers:
            _attach_handlers(root, sys.stdout, cfg.LOG_FILE, cfg.LOG_MAX_BYTES, cfg.LOG_BACKUP_COUNT)
        _root_configured = True


class StructuredLogger:
    """Injectable logger handed to every service and repository.

    By default the logger shares the namespace root's handlers.  Passing
    *stream* or *log_file* gives it private handlers instead and stops
    propagation, which keeps test output out of the application log.

    Usage::

        log = StructuredLogger(name="auth")
        log.info("Signed in", extra={"user_id": "abc-123"})
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: int = 5_242_880,
        backup_count: int = 3,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(_qualify(name))
        self._logger.setLevel(level)

        if stream is None and log_file is None:
            _configure_root(level)
            return

        self._logger.propagate = False
        if not self._logger.handlers:
            _attach_handlers(
                self._logger,
                stream or sys.stdout,
                log_file or f"{ROOT_LOGGER_NAME}.log",
                max_bytes,
                backup_count,
            )

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)


def get_logger(name: str = ROOT_LOGGER_NAME) -> StructuredLogger:
    """Logger for component *name* under the ``classsync`` namespace."""
    return StructuredLogger(name=name)
