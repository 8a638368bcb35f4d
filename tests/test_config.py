"""Tests for configuration loading and validation."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from localid.config import ConsentConfig, LocalIdSettings, LoggingConfig, WebChannelConfig, load_config
from pydantic import ValidationError


class TestWebChannelConfig:
    def test_localhost_no_auth_allowed(self) -> None:
        cfg = WebChannelConfig(host="127.0.0.1", auth_token=None)
        assert cfg.auth_token is None

    def test_0000_requires_auth_token(self) -> None:
        with pytest.raises(ValidationError, match="auth_token is required"):
            WebChannelConfig(host="0.0.0.0", auth_token=None)

    def test_0000_with_auth_allowed(self) -> None:
        cfg = WebChannelConfig(host="0.0.0.0", auth_token="secret123")
        assert cfg.auth_token == "secret123"

    def test_defaults_match_local_web_app(self) -> None:
        cfg = WebChannelConfig()
        assert cfg.port == 5000
        assert cfg.allowed_origins == ["http://localhost:3000"]


class TestConsentConfig:
    def test_defaults(self) -> None:
        cfg = ConsentConfig()
        assert cfg.timeout == timedelta(minutes=5)
        assert cfg.collect_identity_on_first_use is False
        assert cfg.surface == "cli"

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ConsentConfig(timeout_s=0)


def test_web_consent_surface_requires_auth_token() -> None:
    with pytest.raises(ValidationError, match="auth_token is required when consent.surface is web"):
        LocalIdSettings.model_validate({"consent": {"surface": "web"}})

    settings = LocalIdSettings.model_validate(
        {"consent": {"surface": "web"}, "channels": {"web": {"auth_token": "secret123"}}},
    )
    assert settings.channels.web.auth_token == "secret123"


def test_logging_level_is_normalized() -> None:
    assert LoggingConfig(level=" debug ").level == "DEBUG"


def test_default_data_dir_is_expanded() -> None:
    settings = LocalIdSettings()
    assert settings.data_dir == Path("~/.local-oauth").expanduser()
    assert settings.keyring.on_corrupt == "regenerate"


def test_load_config_reads_localid_section(tmp_path: Path) -> None:
    config_path = tmp_path / "localid.yaml"
    config_path.write_text(
        f"""
        localid:
          data_dir: {tmp_path / "data"}
          keyring:
            on_corrupt: fail
          consent:
            timeout_s: 30
            surface: web
          channels:
            web:
              auth_token: expected-token
        """,
        encoding="utf-8",
    )

    settings = load_config(config_path)

    assert settings.data_dir == tmp_path / "data"
    assert settings.keyring.on_corrupt == "fail"
    assert settings.consent.timeout == timedelta(seconds=30)
    assert settings.consent.surface == "web"


def test_load_config_accepts_unwrapped_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "localid.yaml"
    config_path.write_text("consent:\n  collect_identity_on_first_use: true\n", encoding="utf-8")

    settings = load_config(config_path)

    assert settings.consent.collect_identity_on_first_use is True


def test_load_config_applies_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "localid.yaml"
    config_path.write_text("localid:\n  consent:\n    timeout_s: 30\n", encoding="utf-8")

    monkeypatch.setenv("LOCALID_CONSENT__TIMEOUT_S", "90")
    monkeypatch.setenv("LOCALID_CHANNELS__WEB__PORT", "5050")

    settings = load_config(config_path)

    assert settings.consent.timeout_s == 90
    assert settings.channels.web.port == 5050


def test_load_config_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "localid.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError, match="top-level mapping"):
        load_config(config_path)


def test_load_config_rejects_unknown_corrupt_policy(tmp_path: Path) -> None:
    config_path = tmp_path / "localid.yaml"
    config_path.write_text("localid:\n  keyring:\n    on_corrupt: ignore\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(config_path)
