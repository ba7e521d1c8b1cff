"""
Structured Logging Configuration Module

Every credit engine logger writes one JSON object per line. Lifecycle
events carry the borrower, the action and the resource they touched
(credit:<id>, account:<id>) as top-level fields so that a credit's
history can be followed across API request threads and settlement ticks.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


ROOT_LOGGER = "credit_engine"

# Attributes log_action() attaches to a record, in output order
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, empty structured fields omitted"""

    def format(self, record):
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    logger_name: str = ROOT_LOGGER,
    log_format: str = "json",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the engine's logger tree.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger that owns the handler; children propagate to it
        log_format: "json" for structured output, anything else for plain text
        log_file: Optional file path; stderr when None

    Returns:
        The configured logger
    """
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(PLAIN_FORMAT))

    logger = logging.getLogger(logger_name)
    for existing in logger.handlers[:]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    if logger_name == ROOT_LOGGER:
        # Job misfires and executor errors from the settlement timer
        scheduler_logger = logging.getLogger("apscheduler")
        for existing in scheduler_logger.handlers[:]:
            scheduler_logger.removeHandler(existing)
        scheduler_logger.addHandler(handler)
        scheduler_logger.setLevel(logging.WARNING)
        scheduler_logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a credit lifecycle event with its structured fields.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Human readable summary
        user_id: Borrower the event concerns
        action: Operation, e.g. pay_credit or settle_installment
        resource: What was touched, e.g. credit:<id>
        correlation_id: Request or sweep identifier
        extra: Additional structured data
    """
    fields = {
        "correlation_id": correlation_id,
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "extra": extra or None,
    }
    logger.log(getattr(logging, level.upper()), message,
               extra={name: value for name, value in fields.items() if value is not None},
               stacklevel=2)
