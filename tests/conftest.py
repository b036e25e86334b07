from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from relaylink.services.agent_context import AgentContext, build_context
from relaylink.services.crypto import generate_x25519_keypair, seal_b64
from relaylink.services.heartbeat import HealthReport
from relaylink.services.root.client import EXCHANGE_PATH, REGISTER_PATH
from relaylink.services.testing import MemorySecretStore
from relaylink.services.tunnel import TunnelOutcome, TunnelResult

CONTROL_PLANE_URL = "https://cp.test"

SERVER_PASSWORD = "s3rver-pa55"
TUNNEL_TOKEN = "tunnel-tok"
WEBHOOK_SECRET = "whsec-123"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeTunnel:
    def __init__(self, outcomes: list[TunnelOutcome] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.tokens: list[str] = []

    def install(self, tunnel_token: str) -> TunnelResult:
        self.tokens.append(tunnel_token)
        outcome = self.outcomes.pop(0) if self.outcomes else TunnelOutcome.SUCCESS
        return TunnelResult(outcome, "" if outcome is TunnelOutcome.SUCCESS else outcome.value)


class StaticProbe:
    def collect(self) -> HealthReport:
        return HealthReport(os_version="14.4", computer_id="tester@relay-host", has_disk_access=True)


@dataclass
class FakeControlPlane:
    """Plays the server side of the exchange and registration endpoints."""

    exchange_status: int = 200
    register_status: int = 200
    seal_to_other_key: bool = False
    wrong_key_fields: tuple[str, ...] = ()
    webhook_id: str = "wh-1"
    omit: tuple[str, ...] = ()
    requests: list[httpx.Request] = field(default_factory=list)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == EXCHANGE_PATH:
            if self.exchange_status != 200:
                return httpx.Response(self.exchange_status, json={"detail": "invalid or expired token"})
            body = json.loads(request.content)
            pub = body["pubkey_b64"]
            if self.seal_to_other_key:
                pub = generate_x25519_keypair().public_key_b64
            stranger = generate_x25519_keypair().public_key_b64

            def sealed(name: str, value: str) -> str:
                return seal_b64(value, stranger if name in self.wrong_key_fields else pub)

            payload = {
                "host": "relay-1.cp.test",
                "server_id": "srv-1",
                "webhook_id": self.webhook_id,
                "sealed_password_b64": sealed("sealed_password_b64", SERVER_PASSWORD),
                "sealed_tunnel_token_b64": sealed("sealed_tunnel_token_b64", TUNNEL_TOKEN),
                "sealed_webhook_secret_b64": sealed("sealed_webhook_secret_b64", WEBHOOK_SECRET),
                "user_email": "owner@example.com",
            }
            for name in self.omit:
                payload.pop(name, None)
            return httpx.Response(200, json=payload)
        if request.url.path == REGISTER_PATH:
            if self.register_status != 200:
                return httpx.Response(self.register_status, json={"detail": "registration rejected"})
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def secrets() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def tunnel() -> FakeTunnel:
    return FakeTunnel()


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def ctx(tmp_path: Path, monkeypatch, secrets, tunnel, control_plane) -> AgentContext:
    monkeypatch.setenv("RELAYLINK_CONTROL_PLANE_URL", CONTROL_PLANE_URL)
    return build_context(
        tmp_path,
        secrets=secrets,
        tunnel=tunnel,
        probe=StaticProbe(),
        control_plane_transport=control_plane.transport(),
    )
