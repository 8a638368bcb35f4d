from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


def isoformat_z(value: datetime) -> str:
    """Render a datetime the way ``Date.prototype.toISOString`` does."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_isoformat(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True, slots=True)
class Keypair:
    """The installation's Ed25519 signing keypair held in process memory."""

    private_key: bytes = field(repr=False)
    public_key: bytes
    created_at: datetime = field(default_factory=utc_now)

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key).decode("ascii")


class IdentityRequest(BaseModel):
    """Inbound assertion request as posted by the local web application."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nonce: str
    app_name: str | None = Field(default=None, alias="appName")
    app_url: str | None = Field(default=None, alias="appUrl")

    @field_validator("nonce", mode="before")
    @classmethod
    def _require_nonce(cls, value: object) -> object:
        # The nonce is echoed verbatim, so it is checked but never stripped.
        if not isinstance(value, str):
            raise ValueError("nonce must be a string")
        if not value.strip():
            raise ValueError("nonce must not be empty")
        return value

    @field_validator("app_name", "app_url", mode="before")
    @classmethod
    def _drop_unusable_display_field(cls, value: object) -> object:
        # Display-only; a bad value is dropped rather than failing the request.
        return value if isinstance(value, str) else None


class IdentityProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    @field_validator("name", "email")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value must not be empty")
        return cleaned

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("invalid email format")
        return value

    def to_record(self) -> dict[str, str]:
        return {
            "name": self.name,
            "email": self.email,
            "updatedAt": isoformat_z(self.updated_at),
        }


class ClaimSet(BaseModel):
    """The four fields covered by the signature."""

    name: str
    email: str
    timestamp: str
    nonce: str

    def canonical_bytes(self) -> bytes:
        # Key order is part of the wire contract: verifiers rebuild this exact string.
        payload = {
            "name": self.name,
            "email": self.email,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class SignedAssertion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    public_key: str = Field(alias="publicKey")
    timestamp: str
    signature: str
    nonce: str

    def claims(self) -> ClaimSet:
        return ClaimSet(
            name=self.name,
            email=self.email,
            timestamp=self.timestamp,
            nonce=self.nonce,
        )

    def to_response(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class DenialReason(StrEnum):
    user_denied = "user_denied"
    timed_out = "timed_out"
    identity_not_configured = "identity_not_configured"
    validation_failed = "validation_failed"
    internal_error = "internal_error"


DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.user_denied: "User denied the request",
    DenialReason.timed_out: "Consent request timed out",
    DenialReason.identity_not_configured: "Identity not configured",
    DenialReason.validation_failed: "Missing required field: nonce",
    DenialReason.internal_error: "Internal server error",
}


class AssertionDenial(BaseModel):
    reason: DenialReason
    error: str

    @classmethod
    def for_reason(cls, reason: DenialReason) -> AssertionDenial:
        return cls(reason=reason, error=DENIAL_MESSAGES[reason])

    def to_response(self) -> dict[str, str]:
        return {"error": self.error}


AssertionResult: TypeAlias = SignedAssertion | AssertionDenial


__all__ = [
    "DENIAL_MESSAGES",
    "AssertionDenial",
    "AssertionResult",
    "ClaimSet",
    "DenialReason",
    "IdentityProfile",
    "IdentityRequest",
    "Keypair",
    "SignedAssertion",
    "isoformat_z",
    "parse_isoformat",
    "utc_now",
]
