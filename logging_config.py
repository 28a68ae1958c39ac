"""
Logging for DiplomaIssuerWeb.

Every logger lives under ``diploma_issuer``. Records carry the name of the
thread that wrote them: request threads, ``SessionResolve-<sid>`` workers
and ``Mint-<batch>`` threads, so one batch can be followed with a grep.

    2026-10-17 10:15:30 [INFO    ] [MainThread] diploma_issuer.app - Starting DiplomaIssuerWeb
    2026-10-17 10:15:32 [INFO    ] [Mint-a1b2c3d4] diploma_issuer.batch.a1b2c3d4 - Uploading asset

Production also writes ``logs/diploma_issuer.log`` and a separate
``logs/diploma_issuer_error.log`` for ERROR and above, both rotated.
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


APP_LOGGER_NAME = "diploma_issuer"

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

BATCH_ID_LENGTH = 8


class ThreadContextFilter(logging.Filter):
    """Stamps ``thread_name`` and ``thread_id`` on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.thread_name = threading.current_thread().name
        record.thread_id = threading.get_ident()
        return True


def _handler(
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
    thread_filter: logging.Filter,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(thread_filter)
    return handler


def _rotating(path: Path) -> RotatingFileHandler:
    return RotatingFileHandler(
        filename=path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )


def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Attach handlers to the application logger and return it.

    Safe to call more than once: existing handlers are replaced, which the
    test suite relies on when it builds several apps. The logger does not
    propagate to the root logger.
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    thread_filter = ThreadContextFilter()

    logger.addHandler(_handler(logging.StreamHandler(sys.stdout), log_level, formatter, thread_filter))

    if enable_file_logging:
        log_dir = log_dir or Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(_handler(_rotating(app_log_file), log_level, formatter, thread_filter))
        logger.addHandler(
            _handler(_rotating(log_dir / f"{app_name}_error.log"), logging.ERROR, formatter, thread_filter)
        )
        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger under the application namespace (pass ``__name__``)."""
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def short_batch_id(batch_id: str) -> str:
    return batch_id[:BATCH_ID_LENGTH]


def get_batch_logger(batch_id: str) -> logging.Logger:
    """Logger for one issuance batch: ``diploma_issuer.batch.<short id>``."""
    return logging.getLogger(f"{APP_LOGGER_NAME}.batch.{short_batch_id(batch_id)}")


def set_thread_name(name: str) -> None:
    """Rename the current thread; the name shows up in every record it logs."""
    threading.current_thread().name = name
