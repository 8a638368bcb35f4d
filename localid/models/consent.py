from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from localid.models.identity import DenialReason, utc_now


class ConsentState(StrEnum):
    pending = "pending"
    approved = "approved"
    denied = "denied"
    expired = "expired"


class ConsentPrompt(BaseModel):
    """What the user is shown for one pending assertion request."""

    app_name: str | None = None
    app_url: str | None = None
    name: str | None = None
    email: str | None = None
    collect_identity: bool = False

    @property
    def requester(self) -> str:
        return self.app_name or self.app_url or "A local application"


class ConsentSession(BaseModel):
    session_id: str
    prompt: ConsentPrompt
    created_at: datetime = Field(default_factory=utc_now)
    deadline: datetime
    state: ConsentState = ConsentState.pending

    def to_card(self) -> dict[str, object]:
        return {
            "id": self.session_id,
            "title": f"{self.prompt.requester} requests your identity",
            "app_name": self.prompt.app_name,
            "app_url": self.prompt.app_url,
            "name": self.prompt.name,
            "email": self.prompt.email,
            "collect_identity": self.prompt.collect_identity,
            "expires": self.deadline.isoformat(),
            "cta": {
                "approve": "Approve",
                "deny": "Deny",
            },
        }


class ConsentDecision(BaseModel):
    approved: bool
    name: str | None = None
    email: str | None = None
    remember: bool = False

    @field_validator("name", "email")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class ConsentOutcome(BaseModel):
    session_id: str
    state: ConsentState
    reason: DenialReason | None = None
    name: str | None = None
    email: str | None = None
    remember: bool = False
    resolved_at: datetime = Field(default_factory=utc_now)

    @property
    def approved(self) -> bool:
        return self.state == ConsentState.approved


__all__ = [
    "ConsentDecision",
    "ConsentOutcome",
    "ConsentPrompt",
    "ConsentSession",
    "ConsentState",
]
