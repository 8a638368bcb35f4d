"""Exception hierarchy for the assertion agent.

Expected outcomes (validation failures, denials, expiry, missing identity)
are returned as ``AssertionDenial`` results and never raised through here.
These classes cover the faults underneath them.
"""

from __future__ import annotations


class LocalIdError(Exception):
    """Base class for agent faults."""


class KeyringCorruptError(LocalIdError):
    """Persisted keyring exists but cannot be used as key material."""


class SigningError(LocalIdError):
    """Key material handed to the signer is malformed."""


class IdentityProfileError(LocalIdError):
    """Identity profile values are missing or invalid."""


class ConsentSurfaceError(LocalIdError):
    """The user-facing surface failed to present a consent prompt."""


__all__ = [
    "ConsentSurfaceError",
    "IdentityProfileError",
    "KeyringCorruptError",
    "LocalIdError",
    "SigningError",
]
