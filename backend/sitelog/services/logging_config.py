"""Structured logging configuration for the site-visit analytics service."""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

ENGINE_LOGGER = "sitelog-analytics"

# Optional ``extra=`` fields copied onto the JSON line when present
_EXTRA_FIELDS = ("visit_id", "project_id", "report", "cache", "duration_ms", "request_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per line; engine context fields ride along when set."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True, engine_level: Optional[str] = None):
    """
    Configure application logging.

    ``engine_level`` sets the analytics logger on its own; legacy data can
    produce one data-quality warning per visit, which some deployments mute.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    if engine_level:
        logging.getLogger(ENGINE_LOGGER).setLevel(getattr(logging, engine_level.upper(), logging.WARNING))

    for name in ["uvicorn.access", "httpcore", "httpx"]:
        logging.getLogger(name).setLevel(logging.WARNING)
