"""
Logging setup shared by the API, the channel hub and the scoring utilities.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from livescreen.settings import settings


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ("session_id", "subtest_id", "item_index", "event"):
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging() -> None:
    """
    Configure the root logger once.

    LOG_LEVEL picks the level, LOG_FORMAT=json switches to structured output.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo is noisy even at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
