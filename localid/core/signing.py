"""Canonical payload construction and Ed25519 signing of identity claims.

Ed25519 (RFC 8032) derives its per-signature nonce from the key and the
message, so signing is fully deterministic: the same keypair and the same
claim set always yield byte-identical signatures.

Verifiers rebuild the signed bytes as the compact JSON object
``{"name":…,"email":…,"timestamp":…,"nonce":…}`` with the keys in exactly
that order, UTF-8 encoded, non-ASCII characters left unescaped.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from localid.errors import SigningError
from localid.models.identity import ClaimSet, Keypair, SignedAssertion

_PRIVATE_KEY_LENGTH = 32
_PUBLIC_KEY_LENGTH = 32
_SIGNATURE_LENGTH = 64


def canonical_payload(claims: ClaimSet) -> bytes:
    return claims.canonical_bytes()


class SigningEngine:
    """Signs claim sets with the active keypair and verifies issued assertions."""

    def sign(self, claims: ClaimSet, keypair: Keypair) -> bytes:
        if len(keypair.private_key) != _PRIVATE_KEY_LENGTH:
            raise SigningError(f"private key must be {_PRIVATE_KEY_LENGTH} bytes")
        try:
            private_key = Ed25519PrivateKey.from_private_bytes(keypair.private_key)
        except ValueError as exc:
            raise SigningError("private key material is malformed") from exc
        return private_key.sign(canonical_payload(claims))

    def issue(self, claims: ClaimSet, keypair: Keypair) -> SignedAssertion:
        signature = self.sign(claims, keypair)
        return SignedAssertion(
            name=claims.name,
            email=claims.email,
            public_key=keypair.public_key_b64,
            timestamp=claims.timestamp,
            signature=base64.b64encode(signature).decode("ascii"),
            nonce=claims.nonce,
        )

    def verify(self, assertion: SignedAssertion) -> tuple[bool, str]:
        try:
            public_key_raw = base64.b64decode(assertion.public_key.encode("ascii"), validate=True)
            signature = base64.b64decode(assertion.signature.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            return False, "Invalid base64 encoding"

        if len(public_key_raw) != _PUBLIC_KEY_LENGTH:
            return False, "Invalid public key length"
        if len(signature) != _SIGNATURE_LENGTH:
            return False, "Invalid signature length"

        try:
            public_key = Ed25519PublicKey.from_public_bytes(public_key_raw)
            public_key.verify(signature, canonical_payload(assertion.claims()))
        except InvalidSignature:
            return False, "Invalid signature"
        except ValueError as exc:
            return False, str(exc)

        return True, "Valid"


__all__ = ["SigningEngine", "canonical_payload"]
