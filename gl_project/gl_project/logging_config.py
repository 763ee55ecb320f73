"""
Logging configuration for the ledger backend.

LOG_FORMAT: "json" or "console" (default: console in debug, json otherwise)
LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO, DEBUG in debug mode)
"""
import json
import logging
import os
from datetime import datetime, timezone


def get_logging_config(debug: bool = False) -> dict:
    """Build the Django LOGGING dict."""
    log_level = os.environ.get("LOG_LEVEL", "DEBUG" if debug else "INFO")
    log_format = os.environ.get("LOG_FORMAT", "console" if debug else "json")

    config = {
        "version": 1,
        "disable_existing_loggers": False,
    }

    if log_format == "json":
        config["formatters"] = {
            "json": {"()": "gl_project.logging_config.JsonFormatter"},
        }
        formatter = "json"
    else:
        config["formatters"] = {
            "verbose": {
                "format": "[{asctime}] {levelname} {name} {message}",
                "style": "{",
            },
        }
        formatter = "verbose"

    config["handlers"] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": formatter,
        },
        "null": {"class": "logging.NullHandler"},
    }

    config["loggers"] = {
        "": {"handlers": ["console"], "level": log_level},
        "django": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["null"],
            "level": "INFO",
            "propagate": False,
        },
        "ledger_core": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "celery": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
    }
    return config


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields end up under "extra"."""

    standard_attrs = {
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "lineno", "funcName", "created",
        "msecs", "relativeCreated", "thread", "threadName", "taskName",
        "processName", "process", "exc_info", "exc_text", "stack_info",
        "message",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.standard_attrs
        }
        if extras:
            log_entry["extra"] = extras
        return json.dumps(log_entry, default=str)
