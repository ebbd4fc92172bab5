"""Run log for trellis commands.

Registry changes and merge steps are recorded one JSON object per line in
``trellis.log`` inside the trellis home. The file rolls over at 5MB and the
three most recent rollovers are kept.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "trellis.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

# Context passed via ``extra=`` by the store and the merge engine
_EXTRA_FIELDS = ("template", "path", "action", "error")


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, with the template/path/action context when given."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def _detach_file_handlers(logger: logging.Logger, keep: str) -> bool:
    """Close file handlers not writing to *keep*; True if one already does."""
    found = False
    for h in logger.handlers[:]:
        if not isinstance(h, RotatingFileHandler):
            continue
        if h.baseFilename == keep:
            found = True
            continue
        logger.removeHandler(h)
        h.close()
    return found


def setup_logging(log_dir: Path) -> logging.Logger:
    """Send the ``trellis`` logger to ``trellis.log`` in *log_dir*.

    The directory is created if needed. Every CLI invocation calls this, so a
    repeat call for the same directory changes nothing; pointing at another
    directory (a changed TRELLIS_HOME) moves the log there.
    """
    logger = logging.getLogger("trellis")
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / _LOG_FILENAME

    with _setup_lock:
        if _detach_file_handlers(logger, os.path.abspath(str(log_path))):
            return logger
        handler = RotatingFileHandler(str(log_path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def enable_console_logging(level: int = logging.DEBUG) -> None:
    """Echo trellis log records to stderr as plain text (``--verbose``)."""
    logger = logging.getLogger("trellis")
    with _setup_lock:
        if any(getattr(h, "_trellis_console", False) for h in logger.handlers):
            return
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        handler._trellis_console = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.setLevel(level)
