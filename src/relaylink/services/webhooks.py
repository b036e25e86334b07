"""Outbound webhook delivery.

Every matching subscriber gets its own task; deliveries are at-most-once with
no retry and no ordering across endpoints or across consecutive events.

Heartbeat responses are inspected for the control plane's "could not get
relay server" text to detect that the relay record was deleted server-side.
Matching on response text is fragile; a structured error code from the
control plane would replace it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from relaylink.adapters.db.sqlite import WebhookRepository
from relaylink.services.credentials import resolve_webhook_secret
from relaylink.services.eventbus import RELAY_FOUND, RELAY_NOT_FOUND, LocalEventBus
from relaylink.services.identity import IdentityStore
from relaylink.services.node_config import ConfigStore

__all__ = ["WebhookEvent", "WebhookDispatcher", "HEARTBEAT_EVENT", "RELAY_MISSING_MARKER"]

_log = logging.getLogger("relaylink.webhooks")

HEARTBEAT_EVENT = "heartbeat"
RELAY_MISSING_MARKER = "could not get relay server"
RELAY_MISSING_MESSAGE = "The relay server could not find this device. Please re-provision with a new token."


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    type: str
    data: Any = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


def _body_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, httpx.Response):
        try:
            return value.text
        except Exception:
            return repr(value.content)
    return str(value)


class WebhookDispatcher:
    def __init__(
        self,
        webhooks: WebhookRepository,
        identity: IdentityStore,
        config: ConfigStore,
        bus: LocalEventBus,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhooks = webhooks
        self.identity = identity
        self.config = config
        self.bus = bus
        self.timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def dispatch(self, event: WebhookEvent) -> int:
        """Spawn one delivery per matching webhook and return how many were spawned."""
        spawned = 0
        for hook in self.webhooks.list():
            if not hook.accepts(event.type):
                continue
            _log.debug("dispatching event to webhook: %s", hook.url)
            task = asyncio.create_task(self._deliver(hook.url, event), name=f"relaylink-webhook-{hook.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            spawned += 1
        return spawned

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries; used on shutdown."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def send_post(self, url: str, event: WebhookEvent) -> httpx.Response:
        secret = await asyncio.to_thread(resolve_webhook_secret, self.identity, self.config)
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["X-Webhook-Secret"] = f"Bearer {secret}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(url, json=event.as_dict(), headers=headers)

    async def _deliver(self, url: str, event: WebhookEvent) -> None:
        try:
            response = await self.send_post(url, event)
        except httpx.HTTPError as exc:
            self._on_outcome(url, event, body=str(exc), ok=False, error=exc)
        except Exception as exc:
            _log.debug("webhook delivery crashed url=%s", url, exc_info=True)
            self._on_outcome(url, event, body=str(exc), ok=False, error=exc)
        else:
            self._on_outcome(url, event, body=response, ok=not response.is_error, status=response.status_code)

    def _on_outcome(
        self,
        url: str,
        event: WebhookEvent,
        *,
        body: Any,
        ok: bool,
        status: int | None = None,
        error: BaseException | None = None,
    ) -> None:
        if event.type == HEARTBEAT_EVENT:
            self._interpret_heartbeat(url, _body_text(body), ok=ok)
            return
        if not ok:
            _log.debug('failed to dispatch "%s" event to webhook: %s', event.type, url)
            _log.debug("  -> status: %s error: %s", status, error)

    def _interpret_heartbeat(self, url: str, text: str, *, ok: bool) -> None:
        if RELAY_MISSING_MARKER in text.lower():
            _log.warning("control plane could not find relay for this device (webhook %s)", url)
            self.bus.publish(RELAY_NOT_FOUND, {"message": RELAY_MISSING_MESSAGE})
            return
        if ok:
            self.bus.publish(RELAY_FOUND, {})
        else:
            _log.debug("heartbeat delivery failed url=%s", url)
