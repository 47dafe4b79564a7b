"""Central logging configuration.

`setup_logging()` configures the root logger once; `run_log()` mirrors every
record into a per-run file for the duration of a backup, restore or start
run; `log_event()` emits the `event | key=value` lines used across services.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# LogRecord attributes that must not be overwritten through `extra`
_RESERVED_KEYS = {
    "name",
    "msg",
    "message",
    "asctime",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "args",
}


def setup_logging(level: Optional[str] = None) -> None:
    """Initialize application logging.

    - Level is taken from the `LOG_LEVEL` environment variable if not provided.
    - Uses a concise, structured-ish format with timestamps.
    """

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()

    # Configure handlers once to avoid duplicates in reloads
    if not root_logger.handlers:
        logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    # Always align root level (uvicorn may install handlers before we run)
    root_logger.setLevel(log_level)

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # httpx logs every Docker API request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    sqlalchemy_engine_level = logging.DEBUG if root_logger.level == logging.DEBUG else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sqlalchemy_engine_level)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def log_event(logger: logging.Logger, event_name: str, *, level: int = logging.INFO, **fields: object) -> None:
    """Emit a log line with text message and structured context via `extra`."""
    if not fields:
        logger.log(level, "%s", event_name, extra={"event": event_name})
        return

    keys = sorted(fields.keys())
    tmpl = " ".join(f"{k}=%s" for k in keys)
    values = tuple(fields[k] for k in keys)

    safe_extra: dict[str, object] = {"event": event_name}
    for k, v in fields.items():
        safe_key = k if k not in _RESERVED_KEYS else f"field_{k}"
        safe_extra[safe_key] = v

    logger.log(level, "%s | " + tmpl, event_name, *values, extra=safe_extra)


def run_log_path(log_dir: str, operation: str, started_at: Optional[datetime] = None) -> str:
    stamp = (started_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return os.path.join(log_dir, f"docker_{operation}_{stamp}.log")


@contextmanager
def run_log(log_dir: str, operation: str, started_at: Optional[datetime] = None) -> Iterator[Optional[str]]:
    """Attach a file handler to the root logger for one run.

    Yields the log file path, or None when the log directory is not writable
    (the run still logs to the console in that case).
    """
    path = run_log_path(log_dir, operation, started_at)
    handler: Optional[logging.Handler] = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning("run_log_unavailable | path=%s error=%s", path, exc)
        path = None  # type: ignore[assignment]

    root_logger = logging.getLogger()
    if handler is not None:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        handler.setLevel(root_logger.level or logging.INFO)
        root_logger.addHandler(handler)
    try:
        yield path
    finally:
        if handler is not None:
            root_logger.removeHandler(handler)
            handler.close()
