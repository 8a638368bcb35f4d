"""Per-request consent sessions with exactly-once resolution.

Each assertion request gets its own session: an unguessable id, a future
that is the session's private reply channel, and a deadline timer. The
registry maps session id to open session and is the only routing table
for decisions, so a decision can only ever resolve the session whose id it
carries. Entries leave the registry on their first terminal transition,
which makes every later decision for that id a no-op.

All registry mutations happen on the event loop thread.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta

from localid.core.logging import correlation_scope
from localid.core.metrics import (
    CONSENT_DECISION_SECONDS,
    CONSENT_SESSIONS_OPEN,
    CONSENT_SESSIONS_TOTAL,
    STALE_DECISIONS_TOTAL,
)
from localid.errors import ConsentSurfaceError
from localid.models.consent import (
    ConsentDecision,
    ConsentOutcome,
    ConsentPrompt,
    ConsentSession,
    ConsentState,
)
from localid.models.identity import DenialReason, utc_now
from localid.protocols.consent import ConsentSurface

logger = logging.getLogger(__name__)

DEFAULT_CONSENT_TIMEOUT = timedelta(minutes=5)

_session_counter = itertools.count(1)


@dataclass(slots=True)
class _OpenSession:
    session: ConsentSession
    future: asyncio.Future[ConsentOutcome]
    opened_monotonic: float
    timer: asyncio.TimerHandle | None = None


class ConsentBroker:
    """Opens consent sessions on a surface and routes decisions back to them."""

    def __init__(
        self,
        surface: ConsentSurface,
        timeout: timedelta = DEFAULT_CONSENT_TIMEOUT,
    ) -> None:
        if timeout <= timedelta(0):
            raise ValueError("consent timeout must be positive")
        self._surface = surface
        self._timeout = timeout
        self._open: dict[str, _OpenSession] = {}
        self._background: set[asyncio.Task[None]] = set()
        surface.register_decision_handler(self.deliver)

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    async def open_session(self, prompt: ConsentPrompt) -> ConsentOutcome:
        """Present ``prompt`` and wait for its single terminal outcome."""
        loop = asyncio.get_running_loop()
        session_id = self._new_session_id()
        created_at = utc_now()
        session = ConsentSession(
            session_id=session_id,
            prompt=prompt,
            created_at=created_at,
            deadline=created_at + self._timeout,
        )
        entry = _OpenSession(
            session=session,
            future=loop.create_future(),
            opened_monotonic=time.monotonic(),
        )
        # Registered before presenting so a surface that answers immediately
        # still finds its session.
        self._open[session_id] = entry
        entry.timer = loop.call_later(self._timeout.total_seconds(), self._expire, session_id)
        CONSENT_SESSIONS_OPEN.inc()

        with correlation_scope(session_id=session_id):
            logger.info("Consent session opened for %s", prompt.requester)
            try:
                await self._surface.present(session)
            except asyncio.CancelledError:
                self._abandon(session_id)
                raise
            except Exception as exc:
                self._abandon(session_id)
                raise ConsentSurfaceError("consent surface failed to present the prompt") from exc

            try:
                outcome = await entry.future
            finally:
                # No-op after a normal resolution; tears down on cancellation.
                self._abandon(session_id)
            logger.info("Consent session resolved: %s", outcome.state.value)
            return outcome

    def deliver(self, session_id: str, decision: ConsentDecision) -> bool:
        """Route a decision to its session. Returns False when nothing was resolved."""
        if decision.approved:
            resolved = self._resolve(
                session_id,
                ConsentState.approved,
                None,
                decision,
            )
        else:
            resolved = self._resolve(
                session_id,
                ConsentState.denied,
                DenialReason.user_denied,
                decision,
            )
        if not resolved:
            STALE_DECISIONS_TOTAL.inc()
            logger.warning("Ignoring decision for unknown or resolved consent session %s", session_id)
        return resolved

    def dismiss(self, session_id: str) -> bool:
        """The surface closed without an explicit decision: treated as a denial."""
        logger.info("Consent prompt %s dismissed without a decision", session_id)
        return self.deliver(session_id, ConsentDecision(approved=False))

    def is_open(self, session_id: str) -> bool:
        return session_id in self._open

    def pending(self) -> list[ConsentSession]:
        return [entry.session for entry in self._open.values()]

    async def close(self) -> None:
        """Expire every open session and wait for the surface to withdraw them."""
        for session_id in list(self._open):
            self._resolve(session_id, ConsentState.expired, DenialReason.timed_out, None)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _expire(self, session_id: str) -> None:
        with correlation_scope(session_id=session_id):
            if self._resolve(session_id, ConsentState.expired, DenialReason.timed_out, None):
                logger.info("Consent session expired without a decision")

    def _resolve(
        self,
        session_id: str,
        state: ConsentState,
        reason: DenialReason | None,
        decision: ConsentDecision | None,
    ) -> bool:
        entry = self._open.pop(session_id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        entry.session = entry.session.model_copy(update={"state": state})

        outcome = ConsentOutcome(
            session_id=session_id,
            state=state,
            reason=reason,
            name=decision.name if decision is not None else None,
            email=decision.email if decision is not None else None,
            remember=decision.remember if decision is not None else False,
        )
        if not entry.future.done():
            entry.future.set_result(outcome)

        CONSENT_SESSIONS_OPEN.dec()
        CONSENT_SESSIONS_TOTAL.labels(state=state.value).inc()
        CONSENT_DECISION_SECONDS.observe(time.monotonic() - entry.opened_monotonic)
        self._schedule_withdraw(session_id)
        return True

    def _abandon(self, session_id: str) -> None:
        entry = self._open.pop(session_id, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if not entry.future.done():
            entry.future.cancel()
        CONSENT_SESSIONS_OPEN.dec()
        CONSENT_SESSIONS_TOTAL.labels(state="abandoned").inc()
        logger.info("Consent session %s abandoned by its requester", session_id)
        self._schedule_withdraw(session_id)

    def _schedule_withdraw(self, session_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._withdraw(session_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _withdraw(self, session_id: str) -> None:
        try:
            await self._surface.withdraw(session_id)
        except Exception:
            logger.warning("Consent surface failed to withdraw session %s", session_id, exc_info=True)

    @staticmethod
    def _new_session_id() -> str:
        # The random part makes ids unguessable; the counter makes them unique.
        return f"{secrets.token_urlsafe(16)}.{next(_session_counter)}"


__all__ = ["DEFAULT_CONSENT_TIMEOUT", "ConsentBroker"]
