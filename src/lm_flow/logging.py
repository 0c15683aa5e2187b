"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Every message, string
extra and traceback is passed through key redaction before it is written.

Flow identifiers passed via ``extra=`` (``session_id``, ``flow_id``,
``node_id``, ``step_index``) are lifted to the top level of the JSON line so
one session's progress can be grepped without parsing ``extra``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

from lm_flow.flow.redaction import redact

# Attributes every LogRecord carries; anything else came from ``extra=``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

FLOW_FIELDS: tuple[str, ...] = ("session_id", "flow_id", "node_id", "step_index")

_QUIET_LOGGERS = ("openai", "httpx", "httpcore", "urllib3")


def _scrub(value: Any) -> Any:
    return redact(value) if isinstance(value, str) else value


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in FLOW_FIELDS:
                payload[key] = value
            else:
                extra[key] = _scrub(value)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, stream: IO[str] | None = None) -> None:
    """Install a single JSON handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Provider SDKs log full request metadata at DEBUG.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
