"""
Structured logging configuration.

Provides JSON-formatted logs suitable for log aggregation systems
(ELK, Datadog, CloudWatch, etc.).

Indexer code passes stream context through ``extra``:

    logger.warning("...", extra={"contract": "issuer", "key": 42})

``contract``, ``key`` and ``event_type`` are lifted to top-level JSON fields
so every line of one stream can be filtered without parsing messages. The
worker thread name (``indexer-<contract>``) is always included.

Configuration:
- Development: Human-readable console output
- Production: JSON lines to stdout

Environment variables:
- LOG_FORMAT: "json" or "console" (default: json in production)
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
"""
import json
import logging
import os
from datetime import datetime, timezone


APP_LOGGERS = ("events", "projections", "indexer", "ops", "celery")

# Stream context promoted out of "extra"
CONTEXT_FIELDS = ("contract", "key", "event_type")

_STANDARD_ATTRS = frozenset(logging.LogRecord(
    "", logging.INFO, "", 0, "", (), None,
).__dict__) | {"message", "asctime"}


def get_logging_config(debug: bool = False) -> dict:
    """
    Get Django LOGGING configuration.

    Args:
        debug: Whether running in debug mode

    Returns:
        Django LOGGING dict
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO" if not debug else "DEBUG")
    log_format = os.environ.get("LOG_FORMAT", "console" if debug else "json")

    if log_format == "json":
        formatters = {"json": {"()": "ops.logging_config.JsonFormatter"}}
        console = {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    else:
        formatters = {
            "verbose": {
                "format": "[{asctime}] {levelname} {name} ({threadName}) {message}",
                "style": "{",
            },
        }
        console = {"class": "logging.StreamHandler", "formatter": "verbose"}

    loggers = {
        "": {"handlers": ["console"], "level": log_level},
        "django": {"handlers": ["console"], "level": log_level, "propagate": False},
        "django.request": {
            "handlers": ["console"],
            "level": "ERROR" if not debug else log_level,
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["console"] if debug else ["null"],
            "level": "DEBUG" if debug else "INFO",
            "propagate": False,
        },
    }
    for name in APP_LOGGERS:
        loggers[name] = {"handlers": ["console"], "level": log_level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": {
            "console": console,
            "null": {"class": "logging.NullHandler"},
        },
        "loggers": loggers,
    }


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs JSON lines with consistent fields:
    - timestamp: ISO 8601 timestamp (UTC)
    - level, logger, thread, message
    - contract / key / event_type: stream context, when given
    - exception: formatted traceback, when present
    - extra: any other fields passed to the logger
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extras = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            if key in CONTEXT_FIELDS:
                log_entry[key] = value
                continue
            try:
                json.dumps(value)
                extras[key] = value
            except (TypeError, ValueError):
                extras[key] = str(value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if extras:
            log_entry["extra"] = extras

        return json.dumps(log_entry, default=str)
