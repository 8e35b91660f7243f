"""
Structured Logging Configuration Module

Ledger events carry who acted, what they did and on which record. The JSON
formatter writes those fields next to the message; the text format drops them.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Record attributes set by log_action, in output order
LEDGER_FIELDS = ("user_id", "action", "resource", "details")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in LEDGER_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  log_file: Optional[str] = None,
                  logger_name: str = "bank_ledger") -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, "text" for plain lines
        log_file: Optional file path; stderr when not set
        logger_name: Name of the root application logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "bank_ledger") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a ledger event.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error)
        message: Log message
        user_id: Acting user
        action: Operation name, e.g. "post_transaction"
        resource: Record acted on, e.g. "account:<id>"
        extra: Event details, written under "details"
    """
    fields = {"user_id": user_id, "action": action, "resource": resource, "details": extra or None}
    logger.log(getattr(logging, level.upper()), message,
               extra={k: v for k, v in fields.items() if v is not None})
