from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from relaylink.apps.api.auth import require_password
from relaylink.services.agent_context import AgentContext
from relaylink.services.errors import ValidationError

router = APIRouter(dependencies=[Depends(require_password)])


class WebhookCreate(BaseModel):
    url: str
    events: list[Any]


class WebhookUpdate(BaseModel):
    url: Optional[str] = None
    events: Optional[list[Any]] = None


def _ctx(request: Request) -> AgentContext:
    return request.app.state.ctx


@router.get("/ping")
async def ping():
    return {"status": 200, "message": "Ping received!", "data": "pong"}


@router.get("/webhook")
async def list_webhooks(request: Request):
    return {"data": [hook.as_dict() for hook in _ctx(request).webhooks.list()]}


@router.post("/webhook")
async def create_webhook(body: WebhookCreate, request: Request):
    try:
        hook = _ctx(request).webhooks.add(body.url, body.events)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return hook.as_dict()


@router.put("/webhook/{webhook_id}")
async def update_webhook(webhook_id: int, body: WebhookUpdate, request: Request):
    try:
        hook = _ctx(request).webhooks.update(webhook_id, url=body.url, events=body.events)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if hook is None:
        raise HTTPException(status_code=404, detail="webhook not found")
    return hook.as_dict()


@router.delete("/webhook/{webhook_id}")
async def delete_webhook(webhook_id: int, request: Request):
    if not _ctx(request).webhooks.delete(webhook_id):
        raise HTTPException(status_code=404, detail="webhook not found")
    return {"ok": True}
