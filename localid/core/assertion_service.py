from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Protocol

from pydantic import ValidationError

from localid.consent.broker import ConsentBroker
from localid.core.logging import correlation_scope
from localid.core.metrics import ASSERTIONS_TOTAL, observe_assertion_duration
from localid.core.signing import SigningEngine
from localid.errors import IdentityProfileError, LocalIdError
from localid.models.consent import ConsentOutcome, ConsentPrompt, ConsentState
from localid.models.identity import (
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

logger = logging.getLogger(__name__)


class KeyringProtocol(Protocol):
    def load_or_create(self) -> Keypair: ...


class ProfileStoreProtocol(Protocol):
    def load(self) -> IdentityProfile | None: ...
    def save(self, name: str, email: str) -> IdentityProfile: ...


class AssertionService:
    """Validates a request, obtains consent, and signs the approved claim set."""

    def __init__(
        self,
        key_manager: KeyringProtocol,
        profile_store: ProfileStoreProtocol,
        broker: ConsentBroker,
        signing_engine: SigningEngine | None = None,
        *,
        collect_identity_on_first_use: bool = False,
    ) -> None:
        self._key_manager = key_manager
        self._profile_store = profile_store
        self._broker = broker
        self._signing_engine = signing_engine or SigningEngine()
        self._collect_identity_on_first_use = collect_identity_on_first_use

    async def assert_identity(
        self,
        request: IdentityRequest | Mapping[str, object],
    ) -> AssertionResult:
        with correlation_scope(request_id=uuid.uuid4().hex), observe_assertion_duration():
            result = await self._assert_identity(request)
            outcome = "approved" if isinstance(result, SignedAssertion) else result.reason.value
            ASSERTIONS_TOTAL.labels(outcome=outcome).inc()
            return result

    async def _assert_identity(
        self,
        request: IdentityRequest | Mapping[str, object],
    ) -> AssertionResult:
        try:
            identity_request = (
                request
                if isinstance(request, IdentityRequest)
                else IdentityRequest.model_validate(request)
            )
        except ValidationError:
            logger.info("Rejected assertion request without a usable nonce")
            return AssertionDenial.for_reason(DenialReason.validation_failed)

        logger.info(
            "Assertion requested by %s",
            identity_request.app_name or identity_request.app_url or "unnamed application",
        )

        try:
            keypair = self._key_manager.load_or_create()
            profile = self._profile_store.load()
        except (LocalIdError, OSError, ValueError):
            logger.exception("Unable to load signing key or identity profile")
            return AssertionDenial.for_reason(DenialReason.internal_error)

        if profile is None and not self._collect_identity_on_first_use:
            logger.info("No identity profile configured; not prompting")
            return AssertionDenial.for_reason(DenialReason.identity_not_configured)

        prompt = ConsentPrompt(
            app_name=identity_request.app_name,
            app_url=identity_request.app_url,
            name=profile.name if profile is not None else None,
            email=profile.email if profile is not None else None,
            collect_identity=profile is None,
        )
        try:
            outcome = await self._broker.open_session(prompt)
        except LocalIdError:
            logger.exception("Consent prompt could not be shown")
            return AssertionDenial.for_reason(DenialReason.internal_error)

        if not outcome.approved:
            if outcome.state == ConsentState.expired:
                return AssertionDenial.for_reason(DenialReason.timed_out)
            return AssertionDenial.for_reason(outcome.reason or DenialReason.user_denied)

        identity = self._resolve_identity(profile, outcome)
        if identity is None:
            return AssertionDenial.for_reason(DenialReason.identity_not_configured)
        name, email = identity

        claims = ClaimSet(
            name=name,
            email=email,
            timestamp=isoformat_z(utc_now()),
            nonce=identity_request.nonce,
        )
        try:
            assertion = self._signing_engine.issue(claims, keypair)
        except LocalIdError:
            logger.exception("Signing failed")
            return AssertionDenial.for_reason(DenialReason.internal_error)

        logger.info("Assertion signed for approved consent session %s", outcome.session_id)
        return assertion

    def _resolve_identity(
        self,
        profile: IdentityProfile | None,
        outcome: ConsentOutcome,
    ) -> tuple[str, str] | None:
        if profile is not None:
            return profile.name, profile.email

        # First use: the surface captured the identity alongside the approval.
        try:
            captured = IdentityProfile(name=outcome.name or "", email=outcome.email or "")
        except ValidationError:
            logger.info("Approved first-use consent did not include a valid name and email")
            return None

        if outcome.remember:
            try:
                self._profile_store.save(captured.name, captured.email)
            except (IdentityProfileError, OSError):
                logger.warning("Could not remember first-use identity", exc_info=True)
        return captured.name, captured.email


__all__ = ["AssertionService", "KeyringProtocol", "ProfileStoreProtocol"]
