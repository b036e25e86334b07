from __future__ import annotations

import logging
from typing import Callable

from relaylink.services.errors import StoreUnavailable
from relaylink.services.identity import IdentityStore
from relaylink.services.node_config import ConfigStore

_log = logging.getLogger("relaylink.credentials")


def _resolve(name: str, from_store: Callable[[], str | None], from_config: Callable[[], str | None]) -> str | None:
    value: str | None = None
    try:
        value = from_store()
    except StoreUnavailable as exc:
        _log.debug("failed to read %s from secret store: %s", name, exc)
    if value:
        _log.debug("using %s from secret store", name)
        return value
    value = from_config()
    if value:
        _log.debug("using %s from config (fallback)", name)
        return str(value)
    return None


def resolve_server_password(identity: IdentityStore, config: ConfigStore) -> str | None:
    """Secret store first, then the legacy ``password`` config field."""
    return _resolve("server password", identity.get_server_password, lambda: config.config.password)


def resolve_webhook_secret(identity: IdentityStore, config: ConfigStore) -> str | None:
    return _resolve("webhook secret", identity.get_webhook_secret, lambda: config.config.webhook_secret)


__all__ = ["resolve_server_password", "resolve_webhook_secret"]
