"""Logging setup for the relay agent processes."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__all__ = ["setup_logging", "JsonFormatter"]


def _json_payload(record: logging.LogRecord) -> str:
    base = {
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
        "time": logging.Formatter().formatTime(record),
    }
    extra = getattr(record, "extra", None)
    if isinstance(extra, dict):
        base.update(extra)
    if record.exc_info:
        base["exc"] = logging.Formatter().formatException(record.exc_info)
    return json.dumps(base, ensure_ascii=False)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, suitable for the rotating agent log."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - trivial wrapper
        return _json_payload(record)


def setup_logging(
    logs_dir: Path,
    *,
    level: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> Path:
    """Attach a JSON file handler and a console handler to the ``relaylink`` logger."""

    logs_dir.mkdir(parents=True, exist_ok=True)
    logfile = logs_dir / "relaylink.log"

    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logger = logging.getLogger("relaylink")
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.propagate = False

    file_handler = RotatingFileHandler(logfile, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(JsonFormatter())
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(console)

    return logfile
