"""
Logging configuration for the signed URL service.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Dict

# The configured level comes from config.load_settings (SIGNED_MEDIA_LOG_LEVEL).
LOG_LEVEL = logging.INFO


class JSONLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Optional resolution context (via `extra={...}`)
        if hasattr(record, "duration"):
            log_obj["duration_ms"] = round(record.duration * 1000, 2)  # type: ignore
        if hasattr(record, "count"):
            log_obj["count"] = record.count  # type: ignore
        if hasattr(record, "tier"):
            log_obj["tier"] = record.tier  # type: ignore
        if hasattr(record, "cache_key"):
            log_obj["cache_key"] = record.cache_key  # type: ignore

        # Optional request context (from middleware)
        if hasattr(record, "path"):
            log_obj["path"] = record.path  # type: ignore
        if hasattr(record, "method"):
            log_obj["method"] = record.method  # type: ignore

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def setup_logging(level: int = LOG_LEVEL) -> None:
    """Configure JSON formatted logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONLogFormatter())

    # Remove existing handlers and add our JSON handler
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.addHandler(console_handler)

    # Set uvicorn loggers to use the same configuration
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logger = logging.getLogger(logger_name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True

    # botocore logs credential resolution at INFO on every client
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("signed_media").setLevel(level)
