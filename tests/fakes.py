from __future__ import annotations

import asyncio
import inspect

from localid.models.consent import ConsentDecision, ConsentSession
from localid.protocols.consent import ConsentDecisionHandler


class RecordingSurface:
    """In-memory consent surface: records prompts and lets tests answer them."""

    channel_name = "memory"

    def __init__(
        self,
        auto_decision: ConsentDecision | None = None,
        fail_present: bool = False,
    ) -> None:
        self.auto_decision = auto_decision
        self.fail_present = fail_present
        self.handler: ConsentDecisionHandler | None = None
        self.presented: list[ConsentSession] = []
        self.withdrawn: list[str] = []

    def register_decision_handler(self, handler: ConsentDecisionHandler | None) -> None:
        self.handler = handler

    async def present(self, session: ConsentSession) -> None:
        if self.fail_present:
            raise RuntimeError("display unavailable")
        self.presented.append(session)
        if self.auto_decision is not None:
            await self.decide(session.session_id, self.auto_decision)

    async def withdraw(self, session_id: str) -> None:
        self.withdrawn.append(session_id)

    async def decide(self, session_id: str, decision: ConsentDecision) -> bool:
        assert self.handler is not None
        result = self.handler(session_id, decision)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def wait_for_presented(self, count: int = 1, timeout: float = 2.0) -> list[ConsentSession]:
        async def _poll() -> None:
            while len(self.presented) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout=timeout)
        return list(self.presented)

    async def wait_for_withdrawn(self, session_id: str, timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while session_id not in self.withdrawn:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout=timeout)


def approve(**identity: str | bool) -> ConsentDecision:
    return ConsentDecision(approved=True, **identity)


def deny() -> ConsentDecision:
    return ConsentDecision(approved=False)
