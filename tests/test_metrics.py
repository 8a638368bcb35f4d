"""Tests for localid.core.metrics and the counters the request path updates."""

from __future__ import annotations

import asyncio

import pytest
from localid.consent.broker import ConsentBroker
from localid.core.assertion_service import AssertionService
from localid.core.key_manager import KeyringManager
from localid.core.metrics import metrics_generate_latest, observe_assertion_duration
from localid.persistence.profile_store import IdentityProfileStore
from prometheus_client import REGISTRY

from tests.fakes import RecordingSurface, approve


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_observe_assertion_duration_records_even_on_error() -> None:
    before = _sample("localid_assertion_duration_seconds_count")

    with pytest.raises(RuntimeError), observe_assertion_duration():
        raise RuntimeError("boom")

    assert _sample("localid_assertion_duration_seconds_count") == before + 1


def test_generate_latest_lists_all_metric_families() -> None:
    output = metrics_generate_latest().decode()

    for name in (
        "localid_assertions_total",
        "localid_assertion_duration_seconds",
        "localid_consent_sessions_total",
        "localid_consent_sessions_open",
        "localid_consent_decision_seconds",
        "localid_stale_decisions_total",
    ):
        assert name in output


@pytest.mark.asyncio
async def test_request_path_updates_counters(
    key_manager: KeyringManager,
    configured_profile: IdentityProfileStore,
) -> None:
    surface = RecordingSurface(auto_decision=approve())
    broker = ConsentBroker(surface)
    service = AssertionService(key_manager, configured_profile, broker)
    approved_before = _sample("localid_assertions_total", {"outcome": "approved"})
    rejected_before = _sample("localid_assertions_total", {"outcome": "validation_failed"})
    sessions_before = _sample("localid_consent_sessions_total", {"state": "approved"})
    stale_before = _sample("localid_stale_decisions_total")

    await service.assert_identity({"nonce": "abc-123"})
    await service.assert_identity({})
    await surface.decide(surface.presented[0].session_id, approve())
    await asyncio.sleep(0)

    assert _sample("localid_assertions_total", {"outcome": "approved"}) == approved_before + 1
    assert _sample("localid_assertions_total", {"outcome": "validation_failed"}) == rejected_before + 1
    assert _sample("localid_consent_sessions_total", {"state": "approved"}) == sessions_before + 1
    assert _sample("localid_stale_decisions_total") == stale_before + 1
