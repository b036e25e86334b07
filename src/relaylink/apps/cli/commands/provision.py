"""Provisioning and reset commands."""

from __future__ import annotations

import typer

from relaylink.apps.cli.state import get_context
from relaylink.services.agent_context import reset_agent
from relaylink.services.errors import (
    PrivilegeCancelledError,
    ProvisioningBusyError,
    ProvisioningError,
    ValidationError,
)
from relaylink.services.provisioning import ProvisioningFlow, ProvisioningResult


def _run_with_tunnel_retries(flow: ProvisioningFlow, token: str) -> ProvisioningResult:
    try:
        return flow.run(token)
    except PrivilegeCancelledError as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW)
    while typer.confirm("Retry tunnel installation?", default=True):
        try:
            return flow.retry()
        except PrivilegeCancelledError as exc:
            typer.secho(str(exc), fg=typer.colors.YELLOW)
    raise typer.Exit(2)


def provision(token: str = typer.Argument(..., help="Single-use provision token from the dashboard")):
    """Exchange a provision token and link this device to the control plane."""
    ctx = get_context()
    flow = ctx.provisioning_flow()
    try:
        result = _run_with_tunnel_retries(flow, token)
    except (ValidationError, ProvisioningBusyError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ProvisioningError as exc:
        typer.secho(f"provisioning failed at {exc.state}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.echo(f"server:     {result.server_address}")
    typer.echo(f"device id:  {result.device_id}")
    typer.echo(f"webhook id: {result.webhook_id}")
    if result.user_email:
        typer.echo(f"account:    {result.user_email}")
    if not result.registered:
        typer.secho("device registration was not confirmed by the server", fg=typer.colors.YELLOW)
    if not result.webhook_registered:
        typer.secho("webhook registration failed", fg=typer.colors.YELLOW)


def reset(
    wipe_identity: bool = typer.Option(False, "--wipe-identity", help="Also delete the device keypair"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Forget the server linkage and its credentials."""
    if not yes and not typer.confirm("Reset this relay agent?", default=False):
        raise typer.Exit(1)
    reset_agent(get_context(), wipe_identity=wipe_identity)
    typer.echo("agent reset")
