"""Device identity and server credentials kept in the secure secret store."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass

from relaylink.adapters.keychain import SecretStore
from relaylink.services.crypto.keys import b64decode, b64encode, generate_x25519_keypair
from relaylink.services.crypto.sealed_box import open_b64
from relaylink.services.errors import CryptoError, StoreUnavailable

__all__ = ["DeviceIdentity", "CredentialSet", "IdentityStore", "DEVICE_SERVICE", "SERVER_SERVICE"]

_log = logging.getLogger("relaylink.identity")

DEVICE_SERVICE = "com.relaylink.device"
SERVER_SERVICE = "com.relaylink.server"
ACCOUNT_PRIVATE = "device_private_key"
ACCOUNT_PUBLIC = "device_public_key"
ACCOUNT_DEVICE_ID = "device_id"
ACCOUNT_SERVER_PASSWORD = "server_password"
ACCOUNT_WEBHOOK_SECRET = "webhook_secret"


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    device_id: str
    public_key: bytes
    private_key: bytes

    @property
    def public_key_b64(self) -> str:
        return b64encode(self.public_key)

    @property
    def private_key_b64(self) -> str:
        return b64encode(self.private_key)


@dataclass(frozen=True, slots=True)
class CredentialSet:
    server_password: str | None = None
    webhook_secret: str | None = None


class IdentityStore:
    """Owns the device keypair and the ephemeral server credentials."""

    def __init__(self, store: SecretStore) -> None:
        self._store = store
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Device identity
    # ------------------------------------------------------------------
    def ensure_identity(self) -> tuple[DeviceIdentity, bool]:
        """Return the stored identity, creating and persisting one on first use.

        The boolean is ``True`` only for the call that created the identity.
        """
        with self._lock:
            existing = self._load_identity()
            if existing is not None:
                _log.debug("found existing device identity device_id=%s", existing.device_id)
                return existing, False

            keypair = generate_x25519_keypair()
            device_id = self.get_device_id() or str(uuid.uuid4())
            self._store.set(DEVICE_SERVICE, ACCOUNT_PRIVATE, keypair.private_key_b64)
            self._store.set(DEVICE_SERVICE, ACCOUNT_PUBLIC, keypair.public_key_b64)
            self._store.set(DEVICE_SERVICE, ACCOUNT_DEVICE_ID, device_id)
            _log.info("generated device keypair device_id=%s", device_id)
            identity = DeviceIdentity(
                device_id=device_id,
                public_key=keypair.public_key,
                private_key=keypair.private_key,
            )
            return identity, True

    def _load_identity(self) -> DeviceIdentity | None:
        private_b64 = self._store.get(DEVICE_SERVICE, ACCOUNT_PRIVATE)
        public_b64 = self._store.get(DEVICE_SERVICE, ACCOUNT_PUBLIC)
        device_id = self._store.get(DEVICE_SERVICE, ACCOUNT_DEVICE_ID)
        if not (private_b64 and public_b64 and device_id):
            return None
        return DeviceIdentity(
            device_id=device_id,
            public_key=b64decode(public_b64),
            private_key=b64decode(private_b64),
        )

    def get_public_key(self) -> str | None:
        return self._store.get(DEVICE_SERVICE, ACCOUNT_PUBLIC)

    def get_private_key(self) -> str | None:
        return self._store.get(DEVICE_SERVICE, ACCOUNT_PRIVATE)

    def get_device_id(self) -> str | None:
        return self._store.get(DEVICE_SERVICE, ACCOUNT_DEVICE_ID)

    def decrypt_sealed(self, sealed_b64: str) -> str:
        public_b64 = self.get_public_key()
        private_b64 = self.get_private_key()
        if not public_b64 or not private_b64:
            raise CryptoError("no device keypair in secret store")
        return open_b64(sealed_b64, public_b64, private_b64)

    # ------------------------------------------------------------------
    # Server credentials
    # ------------------------------------------------------------------
    def store_server_password(self, secret: str) -> None:
        self._store.set(SERVER_SERVICE, ACCOUNT_SERVER_PASSWORD, secret)
        _log.info("server password stored in secret store")

    def get_server_password(self) -> str | None:
        return self._store.get(SERVER_SERVICE, ACCOUNT_SERVER_PASSWORD)

    def store_webhook_secret(self, secret: str) -> None:
        self._store.set(SERVER_SERVICE, ACCOUNT_WEBHOOK_SECRET, secret)
        _log.info("webhook secret stored in secret store")

    def get_webhook_secret(self) -> str | None:
        return self._store.get(SERVER_SERVICE, ACCOUNT_WEBHOOK_SECRET)

    def store_credentials(self, credentials: CredentialSet) -> None:
        """Replace the whole credential set; fields left as ``None`` are removed."""
        self.clear_server_credentials()
        try:
            if credentials.server_password:
                self.store_server_password(credentials.server_password)
            if credentials.webhook_secret:
                self.store_webhook_secret(credentials.webhook_secret)
        except StoreUnavailable:
            # never leave half a credential set behind
            self._store.delete(SERVER_SERVICE, ACCOUNT_SERVER_PASSWORD)
            raise

    def credentials(self) -> CredentialSet:
        return CredentialSet(
            server_password=self.get_server_password(),
            webhook_secret=self.get_webhook_secret(),
        )

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------
    def clear_server_credentials(self) -> None:
        self._store.delete(SERVER_SERVICE, ACCOUNT_SERVER_PASSWORD)
        self._store.delete(SERVER_SERVICE, ACCOUNT_WEBHOOK_SECRET)
        _log.info("server credentials cleared")

    def clear_keypair(self) -> None:
        with self._lock:
            self._store.delete(DEVICE_SERVICE, ACCOUNT_PRIVATE)
            self._store.delete(DEVICE_SERVICE, ACCOUNT_PUBLIC)
            self._store.delete(DEVICE_SERVICE, ACCOUNT_DEVICE_ID)
        _log.info("device keypair cleared")

    def clear_all_credentials(self) -> None:
        self.clear_keypair()
        self.clear_server_credentials()
