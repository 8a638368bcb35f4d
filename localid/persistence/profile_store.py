from __future__ import annotations

import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from localid.errors import IdentityProfileError
from localid.models.identity import IdentityProfile, utc_now
from localid.persistence.secure_files import read_json_object, write_private_json

logger = logging.getLogger(__name__)

_PROFILE_FILENAME = "identity.json"


class IdentityProfileStore:
    """Remembered name/email, stored beside the keyring with the same permissions."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir).expanduser()
        self._lock = threading.RLock()

    @property
    def profile_path(self) -> Path:
        return self._data_dir / _PROFILE_FILENAME

    def load(self) -> IdentityProfile | None:
        with self._lock:
            if not self.profile_path.exists():
                return None
            try:
                stored = read_json_object(self.profile_path)
                return IdentityProfile.model_validate(stored)
            except (OSError, ValueError, ValidationError):
                logger.warning("Identity profile at %s is unreadable; ignoring it", self.profile_path)
                return None

    def save(self, name: str, email: str) -> IdentityProfile:
        try:
            profile = IdentityProfile(name=name, email=email, updated_at=utc_now())
        except ValidationError as exc:
            raise IdentityProfileError(_first_error(exc)) from exc

        with self._lock:
            write_private_json(self.profile_path, profile.to_record())
        logger.info("Identity profile saved to %s", self.profile_path)
        return profile


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid identity profile"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg', 'invalid value')}"


__all__ = ["IdentityProfileStore"]
