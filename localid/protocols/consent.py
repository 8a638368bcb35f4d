from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeAlias, runtime_checkable

from localid.models.consent import ConsentDecision, ConsentSession

ConsentDecisionHandler: TypeAlias = Callable[[str, ConsentDecision], bool | Awaitable[bool]]


@runtime_checkable
class ConsentSurface(Protocol):
    """User-facing surface that shows consent prompts and reports decisions.

    Decisions flow back only through the registered handler, keyed by the
    session id the prompt was presented with.
    """

    def register_decision_handler(self, handler: ConsentDecisionHandler | None) -> None: ...

    async def present(self, session: ConsentSession) -> None: ...

    async def withdraw(self, session_id: str) -> None: ...


__all__ = ["ConsentDecisionHandler", "ConsentSurface"]
