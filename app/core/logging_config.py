# app/core/logging_config.py

import logging
from logging.config import dictConfig

from app.core.config import settings


def build_logging_config(level: str) -> dict:
    sql_level = "INFO" if settings.LOG_SQL else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "sqlalchemy.engine": {"handlers": ["console"], "level": sql_level, "propagate": False},
            # Resend calls and Stripe request lines
            "httpx": {"handlers": ["console"], "level": "WARNING", "propagate": False},
            "stripe": {"handlers": ["console"], "level": "WARNING", "propagate": False},
            "app": {"handlers": ["console"], "level": level, "propagate": False},
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
    }


def setup_logging(level: str | None = None):
    """Applies the logging configuration. Defaults to LOG_LEVEL from the environment."""
    level = (level or settings.LOG_LEVEL).upper()
    dictConfig(build_logging_config(level))
    logging.getLogger(__name__).debug(f"Logging configured at {level}.")
