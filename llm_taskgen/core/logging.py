"""Centralized logging configuration.

Orchestrator log calls attach request context through ``extra``
(``provider``, ``request_id``, ``operation``); both formatters render it.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

from llm_taskgen.core.config import Settings, settings
from llm_taskgen.core.errors import TaskGenError

_CONTEXT_FIELDS = ("provider", "request_id", "operation")
_NOISY_LOGGERS = ("httpx", "httpcore")


def _context(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in _CONTEXT_FIELDS if getattr(record, name, None)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
            if isinstance(record.exc_info[1], TaskGenError):
                entry["error"] = record.exc_info[1].to_dict()
        return json.dumps(entry, ensure_ascii=False, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable format with request context appended."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


def setup_logging(cfg: Settings | None = None, stream: IO[str] | None = None) -> None:
    """Configure the root logger from settings (LOG_LEVEL, LOG_JSON)."""
    cfg = cfg or settings
    level = logging.getLevelName(cfg.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if cfg.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            ContextFormatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
