from __future__ import annotations

import base64
import binascii
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, TypeAlias

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from localid.errors import KeyringCorruptError
from localid.models.identity import Keypair, isoformat_z, parse_isoformat, utc_now
from localid.persistence.secure_files import (
    ensure_private_dir,
    read_json_object,
    write_private_json,
)

logger = logging.getLogger(__name__)

_KEYPAIR_FILENAME = "keypair.json"
_KEY_LENGTH = 32

CorruptKeyringPolicy: TypeAlias = Literal["regenerate", "fail"]


class KeyringManager:
    """Owns the installation's Ed25519 keypair: load-or-generate, persist, reset.

    The keypair is cached after the first successful load so every assertion
    in this process signs with the same key until an explicit ``reset()``.
    """

    def __init__(
        self,
        data_dir: Path,
        on_corrupt: CorruptKeyringPolicy = "regenerate",
    ) -> None:
        self._data_dir = Path(data_dir).expanduser()
        self._on_corrupt = on_corrupt
        self._lock = threading.RLock()
        self._active: Keypair | None = None

    @property
    def keypair_path(self) -> Path:
        return self._data_dir / _KEYPAIR_FILENAME

    def load_or_create(self) -> Keypair:
        with self._lock:
            if self._active is not None:
                return self._active

            ensure_private_dir(self._data_dir)
            keypair: Keypair | None = None
            if self.keypair_path.exists():
                try:
                    keypair = self._read_keypair()
                except KeyringCorruptError:
                    if self._on_corrupt == "fail":
                        raise
                    logger.warning(
                        "Keyring at %s is corrupt; generating a replacement keypair",
                        self.keypair_path,
                        exc_info=True,
                    )
                    self._quarantine_corrupt_file()
                else:
                    logger.info("Loaded existing keypair from %s", self.keypair_path)

            if keypair is None:
                keypair = self._generate_keypair()

            self._active = keypair
            return keypair

    def reset(self) -> bool:
        """Delete the persisted keyring. The next ``load_or_create`` regenerates."""
        with self._lock:
            self._active = None
            try:
                self.keypair_path.unlink()
            except FileNotFoundError:
                return False
            logger.info("Keypair reset: %s deleted", self.keypair_path)
            return True

    def _generate_keypair(self) -> Keypair:
        logger.info("Generating new Ed25519 keypair")
        private_key = Ed25519PrivateKey.generate()
        private_key_raw = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_key_raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        keypair = Keypair(
            private_key=private_key_raw,
            public_key=public_key_raw,
            created_at=utc_now(),
        )
        write_private_json(
            self.keypair_path,
            {
                "privateKey": base64.b64encode(keypair.private_key).decode("ascii"),
                "publicKey": keypair.public_key_b64,
                "createdAt": isoformat_z(keypair.created_at),
            },
        )
        logger.info("Keypair saved to %s (public key %s)", self.keypair_path, keypair.public_key_b64)
        return keypair

    def _read_keypair(self) -> Keypair:
        try:
            stored = read_json_object(self.keypair_path)
        except (OSError, ValueError) as exc:
            raise KeyringCorruptError(str(exc)) from exc

        private_key_raw = self._decode_key(stored, "privateKey")
        public_key_raw = self._decode_key(stored, "publicKey")

        derived = (
            Ed25519PrivateKey.from_private_bytes(private_key_raw)
            .public_key()
            .public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
        )
        if derived != public_key_raw:
            raise KeyringCorruptError("stored public key does not match private key")

        return Keypair(
            private_key=private_key_raw,
            public_key=public_key_raw,
            created_at=self._created_at(stored.get("createdAt")),
        )

    @staticmethod
    def _decode_key(stored: dict[str, object], field: str) -> bytes:
        encoded = stored.get(field)
        if not isinstance(encoded, str):
            raise KeyringCorruptError(f"{field} is missing")
        try:
            raw = base64.b64decode(encoded.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise KeyringCorruptError(f"{field} is not valid base64") from exc
        if len(raw) != _KEY_LENGTH:
            raise KeyringCorruptError(f"{field} has invalid length {len(raw)}")
        return raw

    def _created_at(self, raw: object) -> datetime:
        if isinstance(raw, str):
            try:
                return parse_isoformat(raw)
            except ValueError:
                logger.debug("Ignoring unparseable createdAt %r", raw)
        # Records written before createdAt existed fall back to the file mtime.
        return datetime.fromtimestamp(self.keypair_path.stat().st_mtime, UTC)

    def _quarantine_corrupt_file(self) -> None:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        backup = self.keypair_path.with_name(f"{_KEYPAIR_FILENAME}.corrupt-{stamp}")
        try:
            os.replace(self.keypair_path, backup)
            os.chmod(backup, 0o600)
        except OSError:
            logger.warning("Could not move corrupt keyring aside", exc_info=True)
            return
        logger.warning("Corrupt keyring moved to %s", backup)


__all__ = ["CorruptKeyringPolicy", "KeyringManager"]
