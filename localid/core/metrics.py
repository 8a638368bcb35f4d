"""Prometheus metrics for the assertion agent.

All metric objects are module-level singletons registered on the default
``prometheus_client`` registry and exposed by the web channel at ``/metrics``.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

ASSERTIONS_TOTAL = Counter(
    "localid_assertions_total",
    "Assertion requests by outcome",
    ["outcome"],
)
ASSERTION_DURATION_SECONDS = Histogram(
    "localid_assertion_duration_seconds",
    "Time from request receipt to assertion or denial",
)
CONSENT_SESSIONS_TOTAL = Counter(
    "localid_consent_sessions_total",
    "Consent sessions by terminal state",
    ["state"],
)
CONSENT_SESSIONS_OPEN = Gauge(
    "localid_consent_sessions_open",
    "Consent sessions currently awaiting a decision",
)
CONSENT_DECISION_SECONDS = Histogram(
    "localid_consent_decision_seconds",
    "Time from prompt to terminal consent state",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
)
STALE_DECISIONS_TOTAL = Counter(
    "localid_stale_decisions_total",
    "Decisions rejected because their session was unknown or already resolved",
)
metrics_generate_latest = generate_latest
METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


@contextmanager
def observe_assertion_duration() -> Iterator[None]:
    start = time.monotonic()
    try:
        yield
    finally:
        ASSERTION_DURATION_SECONDS.observe(time.monotonic() - start)


__all__ = [
    "ASSERTIONS_TOTAL",
    "ASSERTION_DURATION_SECONDS",
    "CONSENT_DECISION_SECONDS",
    "CONSENT_SESSIONS_OPEN",
    "CONSENT_SESSIONS_TOTAL",
    "METRICS_CONTENT_TYPE",
    "STALE_DECISIONS_TOTAL",
    "metrics_generate_latest",
    "observe_assertion_duration",
]
