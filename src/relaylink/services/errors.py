"""Error taxonomy shared by provisioning, the auth gate and webhook dispatch."""

from __future__ import annotations

from typing import Any


class RelayError(RuntimeError):
    """Base error for relay agent workflows."""


class ValidationError(RelayError):
    """Raised when a required input field is missing or malformed."""


class CryptoError(RelayError):
    """Raised when a sealed box cannot be opened with the device keypair."""


# the codec speaks of decryption failures, the protocol of crypto errors
DecryptionError = CryptoError


class TransportError(RelayError):
    """Raised when an HTTP call fails or returns an error status."""

    def __init__(self, message: str, *, status_code: int = 0, payload: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class PrivilegeCancelledError(RelayError):
    """Raised when the user declines an OS elevation prompt."""


class AuthError(RelayError):
    """Raised when a client presents a missing or wrong credential."""


class ConfigError(RelayError):
    """Raised when the agent has no canonical password to check against."""


class StoreUnavailable(RelayError):
    """Raised when the secure credential store cannot be reached."""


class ProvisioningBusyError(RelayError):
    """Raised when a provisioning attempt is already in flight."""


class ProvisioningError(RelayError):
    """Raised when the provisioning flow enters the failed state."""

    def __init__(self, message: str, *, state: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.state = state
        self.cause = cause


__all__ = [
    "RelayError",
    "ValidationError",
    "CryptoError",
    "DecryptionError",
    "TransportError",
    "PrivilegeCancelledError",
    "AuthError",
    "ConfigError",
    "StoreUnavailable",
    "ProvisioningBusyError",
    "ProvisioningError",
]
