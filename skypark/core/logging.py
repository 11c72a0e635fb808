"""
Structured logging for the SkyPark service

Everything under the `skypark` logger goes to stdout, as JSON unless
LOG_FORMAT says otherwise, and to a rotating file outside of tests.
"""

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from typing import Any, Dict

from skypark.config import settings

LOG_DIR = "logs"

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with `extra=` fields merged in"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        })
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _handlers() -> Dict[str, Dict[str, Any]]:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "json" if settings.LOG_FORMAT == "json" else "plain",
            "stream": "ext://sys.stdout",
        },
    }
    if not settings.is_testing:
        os.makedirs(LOG_DIR, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "json",
            "filename": os.path.join(LOG_DIR, "skypark.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }
    return handlers


def setup_logging():
    handlers = _handlers()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
            "json": {"()": JSONFormatter},
        },
        "handlers": handlers,
        "loggers": {
            "skypark": {"level": settings.LOG_LEVEL, "handlers": list(handlers), "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "sqlalchemy": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": settings.LOG_LEVEL, "handlers": ["console"]},
    })


class LoggerAdapter(logging.LoggerAdapter):
    """Stamps fixed context, such as the gate id, onto every record"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
