"""localid CLI entry point and dependency wiring."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import click
from pydantic import ValidationError

from localid.channels.cli import CLIConsentSurface
from localid.channels.web import WebChannel
from localid.config import LocalIdSettings, load_config, require_web_consent_token
from localid.consent.broker import ConsentBroker
from localid.core.assertion_service import AssertionService
from localid.core.key_manager import KeyringManager
from localid.core.logging import setup_logging
from localid.core.signing import SigningEngine
from localid.errors import IdentityProfileError, KeyringCorruptError
from localid.models.identity import SignedAssertion
from localid.persistence.profile_store import IdentityProfileStore
from localid.protocols.consent import ConsentSurface

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = "config/localid.yaml"


@dataclass(slots=True)
class Runtime:
    settings: LocalIdSettings
    key_manager: KeyringManager
    profile_store: IdentityProfileStore
    surface: ConsentSurface
    broker: ConsentBroker
    service: AssertionService
    web_channel: WebChannel


def build_runtime(
    settings: LocalIdSettings,
    surface: ConsentSurface | None = None,
) -> Runtime:
    """Wire keyring, profile store, consent surface, broker, service and HTTP channel."""
    key_manager = KeyringManager(settings.data_dir, on_corrupt=settings.keyring.on_corrupt)
    profile_store = IdentityProfileStore(settings.data_dir)
    web_config = settings.channels.web
    web_channel = WebChannel(
        host=web_config.host,
        port=web_config.port,
        auth_token=web_config.auth_token,
        allowed_origins=web_config.allowed_origins,
        profile_store=profile_store,
    )

    if surface is None:
        surface = web_channel if settings.consent.surface == "web" else CLIConsentSurface()

    broker = ConsentBroker(surface, timeout=settings.consent.timeout)
    service = AssertionService(
        key_manager,
        profile_store,
        broker,
        SigningEngine(),
        collect_identity_on_first_use=settings.consent.collect_identity_on_first_use,
    )
    web_channel.bind_service(service, broker)
    return Runtime(
        settings=settings,
        key_manager=key_manager,
        profile_store=profile_store,
        surface=surface,
        broker=broker,
        service=service,
        web_channel=web_channel,
    )


def _load_settings(config_path: str) -> LocalIdSettings:
    try:
        return load_config(config_path)
    except FileNotFoundError:
        logger.debug("No config file at %s; using defaults and environment", config_path)
        return LocalIdSettings()
    except (ValueError, ValidationError) as exc:
        raise click.ClickException(f"invalid config: {exc}") from exc


@click.group()
def cli() -> None:
    """Local identity-assertion agent."""
    setup_logging()


async def _start_runtime(runtime: Runtime) -> None:
    keypair = runtime.key_manager.load_or_create()
    logger.info("Keypair initialized; public key %s", keypair.public_key_b64)
    logger.info(
        "Serving assertion requests on http://%s:%s",
        runtime.web_channel.host,
        runtime.web_channel.port,
    )
    try:
        await runtime.web_channel.serve(log_level=runtime.settings.logging.level.lower())
    finally:
        await runtime.broker.close()
        if isinstance(runtime.surface, CLIConsentSurface):
            await runtime.surface.stop()


@cli.command("start")
@click.option("--config", "config_path", default=_DEFAULT_CONFIG_PATH, show_default=True)
@click.option(
    "--surface",
    type=click.Choice(["cli", "web"], case_sensitive=False),
    default=None,
    help="Where consent prompts are shown. Overrides consent.surface.",
)
def start_command(config_path: str, surface: str | None) -> None:
    """Start the agent and serve assertion requests."""
    settings = _load_settings(config_path)
    if surface is not None:
        settings.consent.surface = surface.lower()  # type: ignore[assignment]
        try:
            require_web_consent_token(settings)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
    if not settings.channels.web.enabled:
        raise click.ClickException("the agent requires channels.web.enabled=true")

    setup_logging(settings.logging.level, json_output=settings.logging.json_output)
    runtime = build_runtime(settings)
    try:
        asyncio.run(_start_runtime(runtime))
    except KeyringCorruptError as exc:
        raise click.ClickException(f"keyring is corrupt: {exc}") from exc
    except KeyboardInterrupt:
        click.echo("Shutting down.")


# ── keys ─────────────────────────────────────────────────────────────


@cli.group("keys")
def keys_group() -> None:
    """Inspect or reset the signing keypair."""


@keys_group.command("show")
@click.option("--config", "config_path", default=_DEFAULT_CONFIG_PATH, show_default=True)
def keys_show_command(config_path: str) -> None:
    """Print the public key, generating a keypair on first use."""
    settings = _load_settings(config_path)
    manager = KeyringManager(settings.data_dir, on_corrupt=settings.keyring.on_corrupt)
    try:
        keypair = manager.load_or_create()
    except KeyringCorruptError as exc:
        raise click.ClickException(f"keyring is corrupt: {exc}") from exc
    click.echo(f"Public key: {keypair.public_key_b64}")
    click.echo(f"Created:    {keypair.created_at.isoformat()}")
    click.echo(f"Stored in:  {manager.keypair_path}")


@keys_group.command("reset")
@click.option("--config", "config_path", default=_DEFAULT_CONFIG_PATH, show_default=True)
@click.confirmation_option(
    prompt="Verifiers that trust the current public key will stop accepting your assertions. Continue?",
)
def keys_reset_command(config_path: str) -> None:
    """Delete the keypair; a new one is generated on next start."""
    settings = _load_settings(config_path)
    manager = KeyringManager(settings.data_dir, on_corrupt=settings.keyring.on_corrupt)
    if manager.reset():
        click.echo("Keypair deleted. A new keypair will be generated on next use.")
    else:
        click.echo("No keypair to reset.")


# ── identity ─────────────────────────────────────────────────────────


@cli.group("identity")
def identity_group() -> None:
    """Show or save the name and email included in assertions."""


@identity_group.command("show")
@click.option("--config", "config_path", default=_DEFAULT_CONFIG_PATH, show_default=True)
def identity_show_command(config_path: str) -> None:
    settings = _load_settings(config_path)
    profile = IdentityProfileStore(settings.data_dir).load()
    if profile is None:
        click.echo("Identity not configured. Run `localid identity set`.")
        return
    click.echo(f"Name:    {profile.name}")
    click.echo(f"Email:   {profile.email}")
    click.echo(f"Updated: {profile.updated_at.isoformat()}")


@identity_group.command("set")
@click.option("--config", "config_path", default=_DEFAULT_CONFIG_PATH, show_default=True)
@click.option("--name", prompt="Name", help="Display name to assert.")
@click.option("--email", prompt="Email", help="Email address to assert.")
def identity_set_command(config_path: str, name: str, email: str) -> None:
    settings = _load_settings(config_path)
    try:
        profile = IdentityProfileStore(settings.data_dir).save(name, email)
    except IdentityProfileError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Saved identity for {profile.name} <{profile.email}>.")


# ── verify ───────────────────────────────────────────────────────────


@cli.command("verify")
@click.argument("assertion_file", type=click.File("r"), default="-")
def verify_command(assertion_file: TextIO) -> None:
    """Verify a signed assertion JSON document (reads stdin when no file is given)."""
    try:
        assertion = SignedAssertion.model_validate(json.load(assertion_file))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise click.ClickException(f"not a signed assertion: {exc}") from exc

    valid, reason = SigningEngine().verify(assertion)
    if not valid:
        click.echo(f"INVALID: {reason}")
        raise SystemExit(1)
    click.echo(f"VALID: {assertion.name} <{assertion.email}> at {assertion.timestamp}")


def main() -> None:
    cli()


__all__ = ["Runtime", "build_runtime", "cli", "main"]


if __name__ == "__main__":
    main()
