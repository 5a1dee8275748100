"""
Structured JSON Logging for GiftPool
====================================
One JSON object per log line so CloudWatch Logs Insights can filter on the
lifecycle fields directly:

    fields @timestamp, event_id, transition
    | filter level = "WARNING" and service = "lifecycle.state_machine"

Usage:
  from shared.logger import get_logger
  logger = get_logger(__name__)
  logger.info("Contribution confirmed", extra={"event_id": "e1", "amount_cents": 4000})

The root logger is configured by `configure_logging(level)`, which
FundingServices.build() calls with the level from FundingConfig.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any

# LogRecord attributes that are not caller-supplied extras
_STDLIB_FIELDS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "message", "taskName",
}

_configured = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        log_obj: dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "service": record.name,
            "message": record.message,
        }

        for key, value in record.__dict__.items():
            if key not in _STDLIB_FIELDS and not key.startswith("_"):
                log_obj[key] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def configure_logging(level: str = "INFO", *, force: bool = False) -> None:
    """Install the JSON formatter on the root logger. Runs once unless forced."""
    global _configured
    if _configured and not force:
        return
    root = logging.getLogger()
    formatter = JsonFormatter()
    if root.handlers:
        for h in root.handlers:
            h.setFormatter(formatter)
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
