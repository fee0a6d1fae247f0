"""
Log output for the FarmFlow ledger process.

Ledger records may carry context through ``extra``::

    logger.warning("shortfall", extra={"pid": 0, "account": addr, "block": 20})

Both formatters render those fields: the JSON formatter as top-level keys,
the console formatter as a ``key=value`` tail.  Files always get JSON.

    from farmflow_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="farmflow.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

CONTEXT_FIELDS = ("pid", "account", "block")

# Chatty third-party loggers held at WARNING unless the ledger runs at DEBUG
NOISY_LOGGERS = ("aiohttp.access",)


def _context(record: logging.LogRecord) -> dict:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL  ] logger: msg key=value`` with the level coloured."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [
            f"{colour}{stamp} [{record.levelname:<7}]{self.RESET}",
            f"{record.name}: {record.getMessage()}",
        ]
        parts.extend(f"{k}={v}" for k, v in _context(record).items())
        text = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            text += "\n" + self.formatException(record.exc_info)
        return text


_FORMATTERS = {"human": _HumanFormatter, "json": _JSONFormatter}


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Route every logger through the root logger's handlers.

    Handlers installed by an earlier call are dropped.  An unknown *level*
    means INFO and an unknown *fmt* means ``"human"``.  *log_file*'s parent
    directory is created if missing.
    """
    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(root_level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_FORMATTERS.get(fmt, _HumanFormatter)())
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path))
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)

    noisy_level = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
