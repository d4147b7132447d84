"""
Structured Logging Configuration Module

JSON log lines for back office operations. Lifecycle records carry the
account holder, the entity touched, and where relevant the amount and the
resulting status, so one grep over the log follows a transaction or loan
from request to decision.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Structured fields lifted from a record into the JSON line when present
LOG_FIELDS = ("user_id", "action", "entity", "entity_id", "amount", "status", "details")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in LOG_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "backoffice",
                  fmt: str = "json") -> logging.Logger:
    """
    Setup structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        fmt: "json" for structured output, "text" for plain lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "backoffice") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               entity: Optional[str] = None, entity_id: Optional[str] = None,
               amount: Any = None, status: Any = None,
               details: Optional[dict] = None):
    """
    Log a lifecycle step of a back office entity.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: Account holder the step concerns
        action: Operation name, e.g. "decide_transaction"
        entity: Entity kind: user, transaction, loan, institution_request, notification
        entity_id: ID of that entity
        amount: Monetary amount involved, logged as a string
        status: Status after the step, e.g. "REJECTED"
        details: Any other structured data
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "entity": entity,
        "entity_id": entity_id,
        "amount": None if amount is None else str(amount),
        "status": getattr(status, "value", status),
        "details": details or None,
    }
    fields = {k: v for k, v in fields.items() if v is not None}

    logger.log(getattr(logging, level.upper()), message, extra=fields)
