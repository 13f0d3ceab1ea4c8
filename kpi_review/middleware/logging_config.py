"""
Logging setup for the review engine.

Two output shapes, chosen by ``LOG_FORMAT`` (``json`` | ``text``) or, when
unset, by the environment: JSON lines outside development and testing, a
short coloured line otherwise. ``LOG_LEVEL`` sets the threshold.

Services attach review context through ``extra=``; both formatters pick up
the keys listed in ``CONTEXT_KEYS``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

CONTEXT_KEYS = (
    "caller_id",
    "kpi_id",
    "deliverable_id",
    "period_label",
    "assignee_id",
    "discrepancy_id",
    "difference",
    "error_code",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def record_context(record: logging.LogRecord, keys=REQUEST_KEYS + CONTEXT_KEYS) -> dict:
    """Return the ``extra`` fields present on ``record``."""
    found = {}
    for key in keys:
        value = getattr(record, key, None)
        if value is not None:
            found[key] = value
    return found


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message (key=value ...)``"""

    _LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def __init__(self, colour: bool = True) -> None:
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{self._LEVEL_COLOURS.get(record.levelno, '')}{level}{self._RESET}"

        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        context = record_context(record, CONTEXT_KEYS)
        if context:
            line += " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _wants_json(app) -> bool:
    fmt = (app.config.get("LOG_FORMAT") or os.getenv("LOG_FORMAT") or "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return not (app.debug or app.testing)


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    as_json = _wants_json(app)
    default_level = "INFO" if as_json else "DEBUG"
    level_name = (os.getenv("LOG_LEVEL") or default_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter(colour=sys.stderr.isatty()))
    handler.setLevel(level)

    # create_app() may run more than once per process (tests, CLI)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.testing:
        app.logger.info("Logging ready level=%s format=%s", level_name, "json" if as_json else "text")
