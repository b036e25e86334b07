"""Entry point of the ``relaylink`` command."""

from __future__ import annotations

import typer

from relaylink import __version__
from relaylink.apps.cli.commands import api, identity, provision

app = typer.Typer(help="Relay agent: provisioning, credentials and the local webhook API")
app.command("provision")(provision.provision)
app.command("reset")(provision.reset)
app.command("serve")(api.serve)
app.add_typer(identity.app, name="identity")
app.add_typer(identity.credentials_app, name="credentials")


@app.command("version")
def version():
    typer.echo(__version__)


if __name__ == "__main__":
    app()
