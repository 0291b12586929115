"""JSON logging for the content service.

Call sites log a short event name as the message and put the details in
``extra``; ``event``, ``course_id``, ``user_id``, ``key`` and ``pattern``
are promoted to top-level fields when present.
"""

import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from lms_content.core.config import settings

CONTEXT_FIELDS = ("event", "tenant_id", "organisation_id", "course_id", "user_id", "key", "pattern")

QUIET_LOGGERS = ("sqlalchemy.engine", "redis", "httpx", "uvicorn.access")


class ContentJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["ts"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = settings.PROJECT_NAME
        log_record["env"] = settings.ENV
        log_record.setdefault("event", record.getMessage())
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_record[name] = value
        if record.exc_info and "exc_info" not in log_record:
            log_record["exc_info"] = self.formatException(record.exc_info)

        log_record.pop("asctime", None)


def setup_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContentJsonFormatter("%(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
