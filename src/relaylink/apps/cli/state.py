from __future__ import annotations

from relaylink.services.agent_context import AgentContext, build_context
from relaylink.services.logging import setup_logging

_ctx: AgentContext | None = None


def get_context() -> AgentContext:
    """Context for the current CLI invocation, built on first use."""
    global _ctx
    if _ctx is None:
        _ctx = build_context()
        setup_logging(_ctx.logs_dir())
    return _ctx


def set_context(ctx: AgentContext | None) -> None:
    global _ctx
    _ctx = ctx
