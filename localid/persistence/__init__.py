"""Persistence: owner-only JSON files for the keyring and the identity profile."""

from localid.persistence.profile_store import IdentityProfileStore
from localid.persistence.secure_files import (
    ensure_private_dir,
    read_json_object,
    write_private_json,
)

__all__ = [
    "IdentityProfileStore",
    "ensure_private_dir",
    "read_json_object",
    "write_private_json",
]
