"""In-memory stand-ins used by tests and local dry runs."""

from __future__ import annotations

from typing import Mapping

from relaylink.services.errors import StoreUnavailable

__all__ = ["MemorySecretStore"]


class MemorySecretStore:
    """In-memory implementation of the :class:`~relaylink.adapters.keychain.SecretStore` port."""

    def __init__(self, data: Mapping[tuple[str, str], str] | None = None, *, available: bool = True) -> None:
        self._data: dict[tuple[str, str], str] = dict(data or {})
        self.available = available

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailable("secret store is locked")

    def get(self, service: str, account: str) -> str | None:
        self._check()
        return self._data.get((service, account))

    def set(self, service: str, account: str, value: str) -> None:
        self._check()
        self._data[(service, account)] = value

    def delete(self, service: str, account: str) -> None:
        self._check()
        self._data.pop((service, account), None)

    def snapshot(self) -> dict[tuple[str, str], str]:
        return dict(self._data)
