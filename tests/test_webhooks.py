from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from relaylink.services.eventbus import RELAY_FOUND, RELAY_NOT_FOUND
from relaylink.services.webhooks import RELAY_MISSING_MESSAGE, WebhookDispatcher, WebhookEvent


class Recorder:
    def __init__(self, responder=None) -> None:
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


def _dispatcher(ctx, recorder: Recorder) -> WebhookDispatcher:
    return WebhookDispatcher(
        ctx.webhooks,
        ctx.identity,
        ctx.config,
        ctx.bus,
        transport=httpx.MockTransport(recorder),
    )


def _signals(ctx) -> list[tuple[str, dict]]:
    seen: list[tuple[str, dict]] = []
    ctx.bus.subscribe(RELAY_FOUND, lambda topic, data: seen.append((topic, data)))
    ctx.bus.subscribe(RELAY_NOT_FOUND, lambda topic, data: seen.append((topic, data)))
    return seen


@pytest.mark.anyio
async def test_only_matching_webhooks_receive_event(ctx):
    ctx.webhooks.add("https://all.test/hook", ["*"])
    ctx.webhooks.add("https://msg.test/hook", ["new-message"])
    ctx.webhooks.add("https://other.test/hook", ["typing"])
    recorder = Recorder()
    dispatcher = _dispatcher(ctx, recorder)

    spawned = await dispatcher.dispatch(WebhookEvent("new-message", {"text": "hi"}))
    await dispatcher.drain()

    assert spawned == 2
    assert sorted(recorder.urls()) == ["https://all.test/hook", "https://msg.test/hook"]
    assert json.loads(recorder.requests[0].content) == {"type": "new-message", "data": {"text": "hi"}}
    assert dispatcher.pending == 0


@pytest.mark.anyio
async def test_secret_header_attached_when_available(ctx):
    ctx.identity.store_webhook_secret("whsec")
    ctx.webhooks.add("https://all.test/hook", ["*"])
    recorder = Recorder()
    dispatcher = _dispatcher(ctx, recorder)

    await dispatcher.dispatch(WebhookEvent("new-message"))
    await dispatcher.drain()

    assert recorder.requests[0].headers["X-Webhook-Secret"] == "Bearer whsec"


@pytest.mark.anyio
async def test_unsigned_delivery_when_no_secret(ctx):
    ctx.webhooks.add("https://all.test/hook", ["*"])
    recorder = Recorder()
    dispatcher = _dispatcher(ctx, recorder)

    await dispatcher.dispatch(WebhookEvent("new-message"))
    await dispatcher.drain()

    assert len(recorder.requests) == 1
    assert "X-Webhook-Secret" not in recorder.requests[0].headers


@pytest.mark.anyio
async def test_secret_falls_back_to_config(ctx, secrets):
    ctx.config.config.webhook_secret = "legacy-secret"
    secrets.available = False
    ctx.webhooks.add("https://all.test/hook", ["*"])
    recorder = Recorder()
    dispatcher = _dispatcher(ctx, recorder)

    response = await dispatcher.send_post("https://all.test/hook", WebhookEvent("ping"))

    assert response.status_code == 200
    assert recorder.requests[0].headers["X-Webhook-Secret"] == "Bearer legacy-secret"


@pytest.mark.anyio
async def test_heartbeat_success_emits_relay_found(ctx):
    ctx.webhooks.add("https://cp.test/api/webhook/relay/wh-1", ["*"])
    seen = _signals(ctx)
    dispatcher = _dispatcher(ctx, Recorder())

    await dispatcher.dispatch(WebhookEvent("heartbeat", {"timestamp": 1}))
    await dispatcher.drain()

    assert seen == [(RELAY_FOUND, {})]


@pytest.mark.anyio
async def test_relay_missing_marker_in_error_response(ctx):
    ctx.webhooks.add("https://cp.test/api/webhook/relay/wh-1", ["*"])
    seen = _signals(ctx)
    recorder = Recorder(lambda request: httpx.Response(500, text="Error: Could Not Get Relay Server for id"))
    dispatcher = _dispatcher(ctx, recorder)

    await dispatcher.dispatch(WebhookEvent("heartbeat"))
    await dispatcher.drain()

    assert seen == [(RELAY_NOT_FOUND, {"message": RELAY_MISSING_MESSAGE})]


@pytest.mark.anyio
async def test_relay_missing_marker_in_success_response(ctx):
    ctx.webhooks.add("https://cp.test/api/webhook/relay/wh-1", ["*"])
    seen = _signals(ctx)
    recorder = Recorder(lambda request: httpx.Response(200, json={"warning": "could not get relay server"}))
    dispatcher = _dispatcher(ctx, recorder)

    await dispatcher.dispatch(WebhookEvent("heartbeat"))
    await dispatcher.drain()

    assert [topic for topic, _ in seen] == [RELAY_NOT_FOUND]


@pytest.mark.anyio
async def test_marker_ignored_for_other_event_types(ctx):
    ctx.webhooks.add("https://all.test/hook", ["*"])
    seen = _signals(ctx)
    recorder = Recorder(lambda request: httpx.Response(500, text="could not get relay server"))
    dispatcher = _dispatcher(ctx, recorder)

    await dispatcher.dispatch(WebhookEvent("new-message"))
    await dispatcher.drain()

    assert seen == []


@pytest.mark.anyio
async def test_one_failing_endpoint_does_not_affect_others(ctx):
    ctx.webhooks.add("https://broken.test/hook", ["*"])
    ctx.webhooks.add("https://fine.test/hook", ["*"])

    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.host == "broken.test":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    recorder = Recorder(responder)
    dispatcher = _dispatcher(ctx, recorder)

    spawned = await dispatcher.dispatch(WebhookEvent("new-message"))
    await dispatcher.drain()

    assert spawned == 2
    assert sorted(recorder.urls()) == ["https://broken.test/hook", "https://fine.test/hook"]
    assert dispatcher.pending == 0


@pytest.mark.anyio
async def test_heartbeat_transport_error_without_marker_emits_nothing(ctx):
    ctx.webhooks.add("https://cp.test/api/webhook/relay/wh-1", ["*"])
    seen = _signals(ctx)

    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = _dispatcher(ctx, Recorder(responder))

    await dispatcher.dispatch(WebhookEvent("heartbeat"))
    await dispatcher.drain()

    assert seen == []


@pytest.mark.anyio
async def test_dispatch_with_no_webhooks(ctx):
    dispatcher = _dispatcher(ctx, Recorder())
    assert await dispatcher.dispatch(WebhookEvent("heartbeat")) == 0
    await dispatcher.drain()


@pytest.mark.anyio
async def test_secret_lookup_does_not_block_event_loop(ctx, monkeypatch):
    def slow_secret():
        time.sleep(0.3)
        return "whsec"

    monkeypatch.setattr(ctx.identity, "get_webhook_secret", slow_secret)
    recorder = Recorder()
    dispatcher = _dispatcher(ctx, recorder)
    advanced = 0

    async def spin():
        nonlocal advanced
        while True:
            await asyncio.sleep(0.01)
            advanced += 1

    spinner = asyncio.create_task(spin())
    try:
        await dispatcher.send_post("https://all.test/hook", WebhookEvent("ping"))
    finally:
        spinner.cancel()

    assert advanced >= 5
    assert recorder.requests[0].headers["X-Webhook-Secret"] == "Bearer whsec"
