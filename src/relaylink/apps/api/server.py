from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from relaylink import __version__
from relaylink.apps.api import webhooks_api
from relaylink.services.agent_context import AgentContext, build_context

_log = logging.getLogger("relaylink.api")


def create_app(ctx: AgentContext | None = None, *, start_heartbeat: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.ctx is None:
            app.state.ctx = build_context()
        context: AgentContext = app.state.ctx
        _log.info("local api starting base_dir=%s", context.base_dir)
        if start_heartbeat:
            context.heartbeat.start()
        try:
            yield
        finally:
            context.heartbeat.stop()
            await context.dispatcher.drain(timeout=5.0)

    app = FastAPI(title="relaylink", version=__version__, lifespan=lifespan)
    app.state.ctx = ctx
    app.include_router(webhooks_api.router, prefix="/api/v1")
    return app
