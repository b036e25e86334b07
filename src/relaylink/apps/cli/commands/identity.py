"""Device identity and stored credential commands."""

from __future__ import annotations

import typer

from relaylink.apps.cli.state import get_context
from relaylink.services.errors import StoreUnavailable

app = typer.Typer(help="Device identity")
credentials_app = typer.Typer(help="Server credentials held in the keychain")


def _redact(value: str | None) -> str:
    if not value:
        return "(not set)"
    tail = value[-4:] if len(value) > 12 else ""
    return f"{'*' * 8}{tail}"


@app.command("show")
def show(create: bool = typer.Option(False, "--create", help="Generate a keypair if none is stored")):
    """Print the device id and public key."""
    ctx = get_context()
    try:
        if create:
            identity, created = ctx.identity.ensure_identity()
            if created:
                typer.echo("generated a new device keypair")
            device_id, public_key = identity.device_id, identity.public_key_b64
        else:
            device_id, public_key = ctx.identity.get_device_id(), ctx.identity.get_public_key()
    except StoreUnavailable as exc:
        typer.secho(f"keychain unavailable: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if public_key is None:
        typer.echo("no device identity; run `relaylink identity show --create` or provision the device")
        raise typer.Exit(1)
    conf = ctx.config.config
    typer.echo(f"device id:  {device_id or '-'}")
    typer.echo(f"public key: {public_key}")
    typer.echo(f"server:     {conf.server_address or '-'}")
    typer.echo(f"linked:     {'yes' if conf.setup_complete else 'no'}")


@credentials_app.command("show")
def credentials_show():
    """Print the stored server credentials, redacted."""
    ctx = get_context()
    try:
        creds = ctx.identity.credentials()
    except StoreUnavailable as exc:
        typer.secho(f"keychain unavailable: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"server password: {_redact(creds.server_password)}")
    typer.echo(f"webhook secret:  {_redact(creds.webhook_secret)}")


@credentials_app.command("clear")
def credentials_clear():
    """Delete the server password and webhook secret from the keychain."""
    ctx = get_context()
    try:
        ctx.identity.clear_server_credentials()
    except StoreUnavailable as exc:
        typer.secho(f"keychain unavailable: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo("server credentials cleared")
