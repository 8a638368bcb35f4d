from __future__ import annotations

from pathlib import Path

import pytest
from localid.core.key_manager import KeyringManager
from localid.persistence.profile_store import IdentityProfileStore

from tests.fakes import RecordingSurface


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "local-oauth"


@pytest.fixture
def key_manager(data_dir: Path) -> KeyringManager:
    return KeyringManager(data_dir)


@pytest.fixture
def profile_store(data_dir: Path) -> IdentityProfileStore:
    return IdentityProfileStore(data_dir)


@pytest.fixture
def configured_profile(profile_store: IdentityProfileStore) -> IdentityProfileStore:
    profile_store.save("John Doe", "john@example.com")
    return profile_store


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()
