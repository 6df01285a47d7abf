import logging
import logging.config
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from schoolboard.core.config import settings

# Set by RequestLoggingMiddleware for the duration of one HTTP request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request id, or '-' outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get() or "-"
        return True


def _rotating(filename: str, level: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filters": ["request_id"],
        "filename": str(Path(settings.LOG_DIR) / filename),
        "maxBytes": 10 * 1024 * 1024,
        "backupCount": 5,
        "encoding": "utf-8",
    }


def build_logging_config(level: Optional[str] = None) -> dict:
    level = (level or settings.LOG_LEVEL).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s"
            },
            "detailed": {
                "format": "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed",
                "filters": ["request_id"],
                "stream": "ext://sys.stdout",
            },
            "file": _rotating("schoolboard.log", level),
            "error_file": _rotating("error.log", "ERROR"),
            # cache hits/misses and fetch attempts, too chatty for the main log
            "query_file": _rotating("query.log", "DEBUG"),
        },
        "root": {
            "level": level,
            "handlers": ["console", "file", "error_file"],
        },
        "loggers": {
            "schoolboard": {
                "level": level,
                "propagate": True,
            },
            "schoolboard.query": {
                "level": "DEBUG",
                "handlers": ["query_file"],
                "propagate": True,
            },
            "uvicorn.access": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def configure_logging(level: Optional[str] = None):
    Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(level))
