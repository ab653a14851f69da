"""Structured logging configuration.

Process logs are JSON lines on stderr. Records that carry run context through
`extra=` (`pipeline_id`, `run_id`, `step`, `attempt`) get it as top-level keys
named like the run store records (`pipelineId`, `runId`, ...), so a process log
line can be joined with the run directory it talks about. Step log streams
persisted by the run store are separate from this process log.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_RUN_CONTEXT_KEYS = {
    "pipeline_id": "pipelineId",
    "run_id": "runId",
    "step": "step",
    "attempt": "attempt",
}


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object, lifting run context out of `extra`."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in _RUN_CONTEXT_KEYS:
                payload[_RUN_CONTEXT_KEYS[key]] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Send root logging to stderr as JSON lines, replacing earlier handlers."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    # stdout carries command output (JSON reports, run ids).
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())
