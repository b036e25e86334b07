"""Explicit wiring of the agent's collaborators.

Everything that used to be reached through a process-wide server singleton is
held here and passed to the API, the CLI and the background services.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from relaylink.adapters.db.sqlite import WebhookRepository
from relaylink.adapters.keychain import KeyringSecretStore, SecretStore
from relaylink.services.errors import StoreUnavailable
from relaylink.services.eventbus import LocalEventBus
from relaylink.services.heartbeat import HealthProbe, HeartbeatMonitor
from relaylink.services.identity import IdentityStore
from relaylink.services.node_config import ConfigStore, base_dir
from relaylink.services.provisioning import ProvisioningFlow
from relaylink.services.root.client import ControlPlaneClient
from relaylink.services.tunnel import ScriptTunnelInstaller, TunnelInstaller
from relaylink.services.webhooks import WebhookDispatcher

__all__ = ["AgentContext", "build_context", "reset_agent"]

_log = logging.getLogger("relaylink.context")


@dataclass
class AgentContext:
    base_dir: Path
    config: ConfigStore
    secrets: SecretStore
    identity: IdentityStore
    webhooks: WebhookRepository
    bus: LocalEventBus
    dispatcher: WebhookDispatcher
    heartbeat: HeartbeatMonitor
    tunnel: TunnelInstaller | None = None
    control_plane_transport: httpx.BaseTransport | None = None
    provisioning_lock: threading.Lock = field(default_factory=threading.Lock)

    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    def control_plane(self) -> ControlPlaneClient:
        return ControlPlaneClient(
            base_url=self.config.config.control_plane_url,
            transport=self.control_plane_transport,
        )

    def tunnel_installer(self) -> TunnelInstaller:
        if self.tunnel is not None:
            return self.tunnel
        settings = self.config.config.tunnel
        script = Path(settings.script).expanduser() if settings.script else self.base_dir / "scripts" / "install_tunnel_service.sh"
        return ScriptTunnelInstaller(script, elevate=settings.elevate)

    def provisioning_flow(self) -> ProvisioningFlow:
        """New flow sharing this context's single-flight guard."""
        return ProvisioningFlow(
            identity=self.identity,
            client=self.control_plane(),
            tunnel=self.tunnel_installer(),
            webhooks=self.webhooks,
            config=self.config,
            guard=self.provisioning_lock,
        )


def build_context(
    root: Path | None = None,
    *,
    secrets: SecretStore | None = None,
    tunnel: TunnelInstaller | None = None,
    probe: HealthProbe | None = None,
    control_plane_transport: httpx.BaseTransport | None = None,
    webhook_transport: httpx.AsyncBaseTransport | None = None,
) -> AgentContext:
    root = root or base_dir()
    root.mkdir(parents=True, exist_ok=True)
    config = ConfigStore(root)
    store = secrets if secrets is not None else KeyringSecretStore()
    identity = IdentityStore(store)
    webhooks = WebhookRepository(root / "relaylink.sqlite")
    bus = LocalEventBus()
    dispatcher = WebhookDispatcher(webhooks, identity, config, bus, transport=webhook_transport)
    heartbeat = HeartbeatMonitor(dispatcher, config, identity, probe=probe)
    return AgentContext(
        base_dir=root,
        config=config,
        secrets=store,
        identity=identity,
        webhooks=webhooks,
        bus=bus,
        dispatcher=dispatcher,
        heartbeat=heartbeat,
        tunnel=tunnel,
        control_plane_transport=control_plane_transport,
    )


def reset_agent(ctx: AgentContext, *, wipe_identity: bool = False) -> None:
    """Forget the server linkage; with ``wipe_identity`` also drop the device keypair."""
    ctx.heartbeat.stop()
    try:
        ctx.identity.clear_server_credentials()
    except StoreUnavailable as exc:
        _log.error("failed to clear server credentials: %s", exc)
    if wipe_identity:
        ctx.identity.clear_keypair()
    ctx.config.config.clear_linkage()
    ctx.config.save()
    for hook in ctx.webhooks.list():
        ctx.webhooks.delete(hook.id)
    _log.info("agent reset wipe_identity=%s", wipe_identity)
