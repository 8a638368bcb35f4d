"""Logging setup for the agent.

Records are stamped with the ``request_id`` of the assertion request being
served and the ``session_id`` of its consent session. Both come from a
context variable, so concurrent requests on the event loop never see each
other's ids. Private key material must never be passed to a logger.
"""

from __future__ import annotations

import contextvars
import dataclasses
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TextIO

from localid.models.identity import isoformat_z

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [req=%(request_id)s sess=%(session_id)s] %(message)s"


@dataclasses.dataclass(frozen=True, slots=True)
class CorrelationContext:
    request_id: str | None = None
    session_id: str | None = None


_current_context: contextvars.ContextVar[CorrelationContext] = contextvars.ContextVar(
    "localid_correlation",
    default=CorrelationContext(),
)


def get_correlation_context() -> CorrelationContext:
    return _current_context.get()


class CorrelationFilter(logging.Filter):
    """Copy the active correlation ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field, value in dataclasses.asdict(get_correlation_context()).items():
            setattr(record, field, value)
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, timestamps in the same ``Z`` form as assertions."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object | None] = {
            "timestamp": isoformat_z(datetime.fromtimestamp(record.created, UTC)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "session_id": getattr(record, "session_id", None),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: int | str = logging.INFO,
    json_output: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Install a single correlation-aware handler on the root logger.

    Output goes to stderr unless ``stream`` is given; stdout belongs to the
    terminal consent prompts.
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(_JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    handler.addFilter(CorrelationFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


@contextmanager
def correlation_scope(
    *,
    request_id: str | None = None,
    session_id: str | None = None,
) -> Iterator[None]:
    """Set correlation ids for the enclosed block; unset arguments keep outer values."""
    overrides = {
        key: value
        for key, value in (("request_id", request_id), ("session_id", session_id))
        if value is not None
    }
    token = _current_context.set(dataclasses.replace(get_correlation_context(), **overrides))
    try:
        yield
    finally:
        _current_context.reset(token)


__all__ = [
    "CorrelationContext",
    "CorrelationFilter",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
]
