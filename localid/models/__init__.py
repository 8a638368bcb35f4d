from __future__ import annotations

from localid.models.consent import (
    ConsentDecision,
    ConsentOutcome,
    ConsentPrompt,
    ConsentSession,
    ConsentState,
)
from localid.models.identity import (
    DENIAL_MESSAGES,
    AssertionDenial,
    AssertionResult,
    ClaimSet,
    DenialReason,
    IdentityProfile,
    IdentityRequest,
    Keypair,
    SignedAssertion,
    isoformat_z,
    utc_now,
)

__all__ = [
    "DENIAL_MESSAGES",
    "AssertionDenial",
    "AssertionResult",
    "ClaimSet",
    "ConsentDecision",
    "ConsentOutcome",
    "ConsentPrompt",
    "ConsentSession",
    "ConsentState",
    "DenialReason",
    "IdentityProfile",
    "IdentityRequest",
    "Keypair",
    "SignedAssertion",
    "isoformat_z",
    "utc_now",
]
