"""Root logger setup shared by the CLI and the API server.

Local runs get plain text. Every other environment gets one JSON object per
line on stderr so a log collector can index ``severity`` and the run
context fields (``target_id``, ``execution_id``) that callers pass through
``extra=``.
"""

from __future__ import annotations

import json
import logging
import os
import sys

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"
CONTEXT_FIELDS = ("target_id", "execution_id")
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "asyncio")


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, *, env: str | None = None) -> None:
    """Install a single stderr handler on the root logger.

    *level* defaults to ``SITEWARDEN_LOG_LEVEL`` (``INFO``) and *env* to
    ``SITEWARDEN_ENV`` (``local``). Calling this twice replaces the handler.
    """
    level_name = (level or os.environ.get("SITEWARDEN_LOG_LEVEL") or "INFO").upper()
    env_name = (env or os.environ.get("SITEWARDEN_ENV") or "local").strip()

    handler = logging.StreamHandler(sys.stderr)
    if env_name == "local":
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%H:%M:%S"))
    else:
        handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
