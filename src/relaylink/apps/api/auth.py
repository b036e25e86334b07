from __future__ import annotations

import hmac
import logging
import re
from typing import Mapping

from fastapi import HTTPException, Request, status

from relaylink.services.agent_context import AgentContext
from relaylink.services.credentials import resolve_server_password
from relaylink.services.errors import AuthError, ConfigError

_log = logging.getLogger("relaylink.auth")

_BEARER = re.compile(r"^\s*Bearer\s+(.*)$", re.IGNORECASE)
LEGACY_QUERY_PARAMS = ("guid", "password", "token")

MISSING_CREDENTIAL = "Missing server password!"
INVALID_CREDENTIAL = "Invalid server password!"
MISCONFIGURED = "Failed to retrieve server password from keychain or config"


def extract_token(authorization: str | None, query: Mapping[str, str]) -> str | None:
    """
    Candidate token from ``Authorization: Bearer <token>``; legacy query
    parameters ``guid`` / ``password`` / ``token`` are consulted only when the
    header is absent.
    """
    if authorization is not None:
        match = _BEARER.match(authorization)
        if match and match.group(1).strip():
            return match.group(1)
        return None
    for name in LEGACY_QUERY_PARAMS:
        value = query.get(name)
        if value:
            return value
    return None


def passwords_match(candidate: str, canonical: str) -> bool:
    return hmac.compare_digest(candidate.strip().encode("utf-8"), canonical.strip().encode("utf-8"))


def authenticate(ctx: AgentContext, authorization: str | None, query: Mapping[str, str], *, client: str = "-") -> None:
    token = extract_token(authorization, query)
    if not token:
        _log.debug("client (IP: %s) attempted to access the API without a token", client)
        raise AuthError(MISSING_CREDENTIAL)

    password = resolve_server_password(ctx.identity, ctx.config)
    if not password:
        raise ConfigError(MISCONFIGURED)

    if not passwords_match(token, password):
        _log.debug("client (IP: %s) tried to authenticate with an incorrect password", client)
        raise AuthError(INVALID_CREDENTIAL)


def require_password(request: Request) -> None:
    """FastAPI dependency guarding every protected route (runs in the threadpool)."""
    ctx: AgentContext = request.app.state.ctx
    client = request.client.host if request.client else "-"
    try:
        authenticate(ctx, request.headers.get("authorization"), request.query_params, client=client)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except ConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
