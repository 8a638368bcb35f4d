"""Core module: lightweight re-exports only.

AssertionService is NOT imported here to keep the consent broker out of
plain keyring/signing imports. Import it directly:
    from localid.core.assertion_service import AssertionService
"""

from localid.core.key_manager import KeyringManager
from localid.core.signing import SigningEngine, canonical_payload

__all__ = [
    "KeyringManager",
    "SigningEngine",
    "canonical_payload",
]
