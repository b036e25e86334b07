import typer
import uvicorn

from relaylink.apps.api.server import create_app
from relaylink.apps.cli.state import get_context


def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(1234, "--port"),
    no_heartbeat: bool = typer.Option(False, "--no-heartbeat", help="Do not report to the control plane"),
):
    """Run the webhook API and the heartbeat loop."""
    ctx = get_context()
    uvicorn.run(create_app(ctx, start_heartbeat=not no_heartbeat), host=host, port=port, log_config=None)
