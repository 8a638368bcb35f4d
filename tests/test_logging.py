from __future__ import annotations

import asyncio
import json
import logging

import pytest
from localid.core.logging import (
    CorrelationFilter,
    _JsonFormatter,
    correlation_scope,
    get_correlation_context,
)


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_correlation_filter_injects_fields() -> None:
    correlation_filter = CorrelationFilter()
    record = _record()

    with correlation_scope(request_id="req-1", session_id="sess-1"):
        assert correlation_filter.filter(record) is True

    assert record.request_id == "req-1"
    assert record.session_id == "sess-1"


def test_correlation_scope_sets_and_clears_context() -> None:
    baseline = get_correlation_context()

    with correlation_scope(request_id="req-2", session_id="sess-2"):
        current = get_correlation_context()
        assert current.request_id == "req-2"
        assert current.session_id == "sess-2"

    assert get_correlation_context() == baseline


def test_correlation_scope_nested_inherits_and_restores() -> None:
    baseline = get_correlation_context()

    with correlation_scope(request_id="req-outer"):
        outer = get_correlation_context()
        assert outer.request_id == "req-outer"
        assert outer.session_id is None

        with correlation_scope(session_id="sess-inner"):
            inner = get_correlation_context()
            assert inner.request_id == "req-outer"
            assert inner.session_id == "sess-inner"

        assert get_correlation_context() == outer

    assert get_correlation_context() == baseline


@pytest.mark.asyncio
async def test_concurrent_tasks_keep_separate_request_ids() -> None:
    seen: dict[str, str | None] = {}

    async def _serve(request_id: str) -> None:
        with correlation_scope(request_id=request_id):
            await asyncio.sleep(0.01)
            seen[request_id] = get_correlation_context().request_id

    await asyncio.gather(_serve("req-a"), _serve("req-b"))

    assert seen == {"req-a": "req-a", "req-b": "req-b"}


def test_json_formatter_includes_correlation_fields() -> None:
    record = _record("signed")
    with correlation_scope(request_id="req-3", session_id="sess-3"):
        CorrelationFilter().filter(record)

    payload = json.loads(_JsonFormatter().format(record))

    assert payload["message"] == "signed"
    assert payload["request_id"] == "req-3"
    assert payload["session_id"] == "sess-3"
    assert payload["level"] == "INFO"
