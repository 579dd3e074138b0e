"""Logging for sync cycles.

Everything goes through the ``notesync`` logger: a per-session rotating file
under ``~/.notesync/logs`` plus stderr for warnings. Actions are logged as one
JSON object per line so cycles can be grepped and timed afterwards.

Settings are read from the environment when the logger is first used;
:func:`apply_logging_config` seeds them from the config file.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "notesync"

ENV_LOG_DIR = "NOTESYNC_LOG_DIR"
ENV_LOG_LEVEL = "NOTESYNC_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "NOTESYNC_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "NOTESYNC_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "NOTESYNC_LOG_DISABLE_FILE"

DEFAULT_LOG_DIR = Path.home() / ".notesync" / "logs"

_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"

_logger_initialized = False
_session_start: Optional[str] = None


def _level_from_env() -> int:
    level = logging.getLevelName(os.getenv(ENV_LOG_LEVEL, "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _session_log_path() -> Optional[Path]:
    """Log file of this process, or None when file logging is disabled."""
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None
    if _session_start is None:
        _session_start = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    log_dir = Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"notesync_{_session_start}.log"


def get_logger() -> logging.Logger:
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)
    if _logger_initialized:
        return logger
    _logger_initialized = True

    level = _level_from_env()
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    logger.handlers.clear()
    logger.setLevel(level)

    handlers: list[logging.Handler] = []
    path = _session_log_path()
    if path is not None:
        handlers.append(RotatingFileHandler(
            path,
            maxBytes=int(os.getenv(ENV_LOG_MAX_BYTES, 10 * 1024 * 1024)),
            backupCount=int(os.getenv(ENV_LOG_BACKUP_COUNT, 5)),
        ))
    stderr = logging.StreamHandler()
    stderr.setLevel(max(level, logging.WARNING))
    handlers.append(stderr)

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def _dumps(fields: Dict[str, Any]) -> str:
    return json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
    **fields: Any,
) -> None:
    """Log one action as a JSON line with timestamp, outcome and ``fields``."""
    record = dict(fields, action=action, outcome=outcome)
    record["ts"] = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 2)
    (logger or get_logger()).info(_dumps(record))


def _emit(level: int, message: str, logger: Optional[logging.Logger], fields: Dict[str, Any]) -> None:
    logger = logger or get_logger()
    if logger.isEnabledFor(level):
        logger.log(level, f"{message} {_dumps(fields)}" if fields else message)


def log_debug(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    _emit(logging.DEBUG, message, logger, fields)


def log_warning(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    _emit(logging.WARNING, message, logger, fields)


def log_error(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    _emit(logging.ERROR, message, logger, fields)


@contextmanager
def timeit(action: str, *, logger: Optional[logging.Logger] = None, **fields: Any):
    """Log ``action`` with its duration when the block exits.

    The block may put extra fields (and an ``outcome``) into the yielded
    dict. An exception is logged with outcome "error" and re-raised.
    """
    extra: Dict[str, Any] = {}
    start = time.perf_counter()
    outcome = "error"
    try:
        yield extra
        outcome = extra.pop("outcome", "ok")
    finally:
        elapsed = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome=outcome, duration_ms=elapsed, logger=logger, **{**fields, **extra})


def apply_logging_config(config: Any) -> None:
    """Seed the logging environment from a ``LoggingConfig``.

    Variables already set win. Does nothing once the logger exists.
    """
    if _logger_initialized:
        return
    defaults = {
        ENV_LOG_LEVEL: config.level,
        ENV_LOG_MAX_BYTES: str(config.max_bytes),
        ENV_LOG_BACKUP_COUNT: str(config.backup_count),
    }
    if config.dir:
        defaults[ENV_LOG_DIR] = str(Path(config.dir).expanduser())
    if config.disable_file:
        defaults[ENV_LOG_DISABLE_FILE] = "1"
    for name, value in defaults.items():
        os.environ.setdefault(name, value)
