"""
Logging configuration for the timeline server.
JSON lines on stderr, level from INK_LOG_LEVEL.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import json
import logging
import os
import sys


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "session_id"):
            entry["session_id"] = record.session_id
        if hasattr(record, "stack_id"):
            entry["stack_id"] = record.stack_id

        if record.exc_info:
            entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, ensure_ascii=False)


def setup_logging(level: Optional[str] = None) -> None:
    """Install the JSON handler on the root logger, replacing existing handlers."""
    level_name = (level or os.environ.get("INK_LOG_LEVEL") or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
