"""Process-wide logging setup."""

from __future__ import annotations

import logging
import logging.config

AUDIT_LOGGER_NAME = "stream_points.audit"

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


def configure_logging(level: str = "INFO") -> None:
    """Configure root and library loggers."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"level": level.upper(), "handlers": ["console"]},
            "loggers": {
                "twitchio": {"level": "INFO"},
                "httpx": {"level": "WARNING"},
                "sqlalchemy.engine": {"level": "WARNING"},
                "uvicorn": {"level": "INFO"},
                "uvicorn.access": {"level": "WARNING"},
                AUDIT_LOGGER_NAME: {"level": "INFO"},
            },
        }
    )


def log_suspicious_activity(message: str, **details) -> None:
    """Emit an audit record; never raises."""
    audit_logger.warning(f"[SUSPICIOUS] {message}", extra={"audit": details})
