from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})


class KeyringConfig(BaseModel):
    on_corrupt: Literal["regenerate", "fail"] = "regenerate"
    """What to do when keypair.json exists but is unusable. ``regenerate``
    moves it aside and creates a new identity key; ``fail`` refuses to start."""


class ConsentConfig(BaseModel):
    timeout_s: float = Field(default=300.0, gt=0)
    collect_identity_on_first_use: bool = False
    surface: Literal["cli", "web"] = "cli"

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.timeout_s)


class WebChannelConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 5000
    auth_token: str | None = None
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @model_validator(mode="after")
    def _validate_remote_requires_auth(self) -> WebChannelConfig:
        if self.host not in _LOOPBACK_HOSTS and self.auth_token is None:
            raise ValueError("channels.web.auth_token is required when host is not loopback")
        return self


class ChannelsConfig(BaseModel):
    web: WebChannelConfig = Field(default_factory=WebChannelConfig)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.strip().upper()


class LocalIdSettings(BaseSettings):
    data_dir: Path = Path("~/.local-oauth")
    keyring: KeyringConfig = Field(default_factory=KeyringConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="LOCALID_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("data_dir")
    @classmethod
    def _expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @model_validator(mode="after")
    def _validate_web_consent_requires_auth(self) -> LocalIdSettings:
        require_web_consent_token(self)
        return self


def require_web_consent_token(settings: LocalIdSettings) -> None:
    """Browser consent decisions must carry the agent token.

    Without it any page open in the browser, the requesting app included,
    could answer its own consent prompt.
    """
    if settings.consent.surface == "web" and not settings.channels.web.auth_token:
        raise ValueError("channels.web.auth_token is required when consent.surface is web")


_ENV_PREFIX = "LOCALID_"


def _env_overrides(environ: Mapping[str, str]) -> dict[str, object]:
    """Turn ``LOCALID_A__B=value`` variables into ``{"a": {"b": value}}``.

    Values are parsed as YAML scalars so ``true``/``90`` arrive typed.
    """
    overrides: dict[str, object] = {}
    for name, raw in environ.items():
        if not name.startswith(_ENV_PREFIX):
            continue
        *parents, leaf = name.removeprefix(_ENV_PREFIX).lower().split("__")
        node = overrides
        for part in parents:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        parsed = yaml.safe_load(raw)
        node[leaf] = raw if parsed is None else parsed
    return overrides


def _deep_merge(base: dict[str, object], overrides: dict[str, object]) -> dict[str, object]:
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path = "config/localid.yaml") -> LocalIdSettings:
    """Load settings from YAML, then apply ``LOCALID_*`` environment overrides.

    The document may wrap everything in a ``localid:`` section or hold the
    settings at the top level.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"config file not found: {config_path}")

    document = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ValueError("config file must contain a top-level mapping")

    section = document.get("localid", document)
    if not isinstance(section, dict):
        raise ValueError("the localid section must be a mapping")

    return LocalIdSettings.model_validate(_deep_merge(section, _env_overrides(os.environ)))


__all__ = [
    "ChannelsConfig",
    "ConsentConfig",
    "KeyringConfig",
    "LocalIdSettings",
    "LoggingConfig",
    "WebChannelConfig",
    "load_config",
    "require_web_consent_token",
]
