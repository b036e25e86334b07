from __future__ import annotations

from typing import Protocol

from relaylink.services.errors import StoreUnavailable


class SecretStore(Protocol):
    """Namespaced string secrets: ``service`` is the namespace, ``account`` the key."""

    def get(self, service: str, account: str) -> str | None: ...

    def set(self, service: str, account: str, value: str) -> None: ...

    def delete(self, service: str, account: str) -> None: ...


def _require_keyring():
    try:
        import keyring  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise StoreUnavailable("system keyring is unavailable") from exc
    return keyring


class KeyringSecretStore:
    """Secret store backed by the OS credential vault through :mod:`keyring`."""

    def get(self, service: str, account: str) -> str | None:
        keyring = _require_keyring()
        try:
            value = keyring.get_password(service, account)
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise StoreUnavailable(f"failed to read {account} from keyring") from exc
        return value or None

    def set(self, service: str, account: str, value: str) -> None:
        keyring = _require_keyring()
        try:
            keyring.set_password(service, account, value)
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise StoreUnavailable(f"failed to write {account} to keyring") from exc

    def delete(self, service: str, account: str) -> None:
        keyring = _require_keyring()
        try:
            keyring.delete_password(service, account)
        except keyring.errors.PasswordDeleteError:  # type: ignore[attr-defined]
            return
        except Exception as exc:  # pragma: no cover
            raise StoreUnavailable(f"failed to delete {account} from keyring") from exc


__all__ = ["SecretStore", "KeyringSecretStore"]
