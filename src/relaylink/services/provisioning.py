"""Device onboarding: token exchange, secret decryption, tunnel install, registration.

The flow is a strictly sequential state machine::

    Idle -> TokenEntered -> KeypairReady -> Exchanging -> SecretsDecrypting
         -> TunnelInstalling -> Registering -> WebhookRegistering
         -> ConfigPersisting -> Complete

Any step may move the flow to ``Failed``. :meth:`ProvisioningFlow.retry`
re-enters the step that failed without repeating earlier ones, with two
exceptions: a failed exchange and a failed decryption both burn the token, so
the user has to :meth:`~ProvisioningFlow.submit_token` a fresh one first. A
decryption failure additionally drops the exchange response and puts the flow
back into ``TokenEntered``.

Nothing is written to the secret store before ``ConfigPersisting``; the three
sealed values are decrypted together and kept in memory only. A crash after
the tunnel is installed but before the credentials are persisted leaves a live
tunnel without local credentials; re-provisioning with a new token recovers.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from relaylink.adapters.db.sqlite import WebhookRepository
from relaylink.services.errors import (
    CryptoError,
    PrivilegeCancelledError,
    ProvisioningBusyError,
    ProvisioningError,
    RelayError,
    TransportError,
    ValidationError,
)
from relaylink.services.identity import CredentialSet, DeviceIdentity, IdentityStore
from relaylink.services.node_config import ConfigStore, normalize_server_address
from relaylink.services.root.client import ControlPlaneClient, ExchangeResponse
from relaylink.services.tunnel import TunnelInstaller, TunnelOutcome

__all__ = ["ProvisioningState", "ProvisioningResult", "ProvisioningFlow"]

_log = logging.getLogger("relaylink.provisioning")

ELEVATION_MESSAGE = "Administrator password required to install the tunnel. Retry to try again."


class ProvisioningState(str, Enum):
    IDLE = "idle"
    TOKEN_ENTERED = "token_entered"
    KEYPAIR_READY = "keypair_ready"
    EXCHANGING = "exchanging"
    SECRETS_DECRYPTING = "secrets_decrypting"
    TUNNEL_INSTALLING = "tunnel_installing"
    REGISTERING = "registering"
    WEBHOOK_REGISTERING = "webhook_registering"
    CONFIG_PERSISTING = "config_persisting"
    COMPLETE = "complete"
    FAILED = "failed"

    def __str__(self) -> str:  # pragma: no cover - convenience for logging only
        return str(self.value)


_STEPS = (
    ProvisioningState.KEYPAIR_READY,
    ProvisioningState.EXCHANGING,
    ProvisioningState.SECRETS_DECRYPTING,
    ProvisioningState.TUNNEL_INSTALLING,
    ProvisioningState.REGISTERING,
    ProvisioningState.WEBHOOK_REGISTERING,
    ProvisioningState.CONFIG_PERSISTING,
)

# steps that cannot run again without a fresh token
_TOKEN_STEPS = (ProvisioningState.KEYPAIR_READY, ProvisioningState.EXCHANGING)


@dataclass(frozen=True, slots=True)
class _Secrets:
    server_password: str
    tunnel_token: str
    webhook_secret: str


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    server_id: str
    server_address: str
    webhook_id: str
    webhook_url: str
    device_id: str
    is_new_identity: bool
    registered: bool
    webhook_registered: bool
    user_email: str | None = None


@dataclass
class ProvisioningFlow:
    """One onboarding attempt; keep the instance around to retry a failed step."""

    identity: IdentityStore
    client: ControlPlaneClient
    tunnel: TunnelInstaller
    webhooks: WebhookRepository
    config: ConfigStore
    guard: threading.Lock = field(default_factory=threading.Lock)
    on_transition: Callable[["ProvisioningState"], None] | None = None

    state: ProvisioningState = field(default=ProvisioningState.IDLE, init=False)
    failed_state: ProvisioningState | None = field(default=None, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    history: list[ProvisioningState] = field(default_factory=list, init=False)
    _token: str | None = field(default=None, init=False, repr=False)
    _next_step: ProvisioningState = field(default=ProvisioningState.KEYPAIR_READY, init=False)
    _device: DeviceIdentity | None = field(default=None, init=False, repr=False)
    _is_new: bool = field(default=False, init=False)
    _exchange: ExchangeResponse | None = field(default=None, init=False, repr=False)
    _secrets: _Secrets | None = field(default=None, init=False, repr=False)
    _registered: bool = field(default=False, init=False)
    _webhook_registered: bool = field(default=False, init=False)
    _result: ProvisioningResult | None = field(default=None, init=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def paused_for_elevation(self) -> bool:
        return self.state is ProvisioningState.FAILED and isinstance(self.last_error, PrivilegeCancelledError)

    @property
    def result(self) -> ProvisioningResult | None:
        return self._result

    def submit_token(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            raise ValidationError("Please enter your provision token")
        if self.state is ProvisioningState.COMPLETE:
            raise ValidationError("provisioning already complete")
        self._token = token
        if self._next_step not in _TOKEN_STEPS:
            # a fresh token always restarts from the exchange
            self._next_step = ProvisioningState.KEYPAIR_READY
            self._exchange = None
            self._secrets = None
        self.failed_state = None
        self.last_error = None
        self._transition(ProvisioningState.TOKEN_ENTERED)

    def run(self, token: str | None = None) -> ProvisioningResult:
        """Run the flow to completion from the current step."""
        if not self.guard.acquire(blocking=False):
            raise ProvisioningBusyError("a provisioning attempt is already running")
        try:
            if self.state is ProvisioningState.COMPLETE and self._result is not None and token is None:
                return self._result
            if token is not None:
                self.submit_token(token)
            if self._token is None and self._next_step in _TOKEN_STEPS:
                raise ValidationError("a provisioning token is required")
            return self._drive()
        finally:
            self.guard.release()

    def retry(self) -> ProvisioningResult:
        """Re-enter the failed step; never called automatically."""
        if self.failed_state is not None and self._next_step in _TOKEN_STEPS and self._token is None:
            raise ValidationError("this token has been used; enter a new provisioning token")
        if self.state is not ProvisioningState.FAILED:
            raise ValidationError(f"nothing to retry in state {self.state}")
        _log.info("retrying provisioning from %s", self._next_step)
        return self.run()

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    def _drive(self) -> ProvisioningResult:
        handlers: dict[ProvisioningState, Callable[[], None]] = {
            ProvisioningState.KEYPAIR_READY: self._keypair_ready,
            ProvisioningState.EXCHANGING: self._exchanging,
            ProvisioningState.SECRETS_DECRYPTING: self._secrets_decrypting,
            ProvisioningState.TUNNEL_INSTALLING: self._tunnel_installing,
            ProvisioningState.REGISTERING: self._registering,
            ProvisioningState.WEBHOOK_REGISTERING: self._webhook_registering,
            ProvisioningState.CONFIG_PERSISTING: self._config_persisting,
        }
        start = _STEPS.index(self._next_step)
        for index in range(start, len(_STEPS)):
            step = _STEPS[index]
            self._next_step = step
            self._transition(step)
            try:
                handlers[step]()
            except CryptoError as exc:
                self._reset_after_crypto_failure(exc)
                raise ProvisioningError(str(exc), state=step.value, cause=exc) from exc
            except (PrivilegeCancelledError, ProvisioningError) as exc:
                self._fail(step, exc)
                raise
            except RelayError as exc:
                self._fail(step, exc)
                raise ProvisioningError(str(exc), state=step.value, cause=exc) from exc
            except Exception as exc:
                self._fail(step, exc)
                raise ProvisioningError(str(exc) or type(exc).__name__, state=step.value, cause=exc) from exc
        self._transition(ProvisioningState.COMPLETE)
        _log.info("provisioning complete device_id=%s", self._device.device_id if self._device else "-")
        assert self._result is not None
        return self._result

    def _transition(self, state: ProvisioningState) -> None:
        self.state = state
        self.history.append(state)
        if self.on_transition is not None:
            try:
                self.on_transition(state)
            except Exception:
                _log.debug("transition callback failed state=%s", state, exc_info=True)

    def _fail(self, step: ProvisioningState, exc: BaseException) -> None:
        self.failed_state = step
        self.last_error = exc
        if step is ProvisioningState.EXCHANGING:
            # the control plane consumes the token even when the call fails
            self._token = None
        _log.error("provisioning failed at %s: %s", step, exc)
        self._transition(ProvisioningState.FAILED)

    def _reset_after_crypto_failure(self, exc: CryptoError) -> None:
        _log.error("could not decrypt provisioning secrets: %s", exc)
        self.failed_state = ProvisioningState.SECRETS_DECRYPTING
        self.last_error = exc
        self._token = None
        self._exchange = None
        self._secrets = None
        self._next_step = ProvisioningState.KEYPAIR_READY
        self._transition(ProvisioningState.TOKEN_ENTERED)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _keypair_ready(self) -> None:
        self._device, self._is_new = self.identity.ensure_identity()
        _log.info(
            "keypair ready device_id=%s new=%s",
            self._device.device_id,
            self._is_new,
        )

    def _device_name(self) -> str:
        assert self._device is not None
        return f"{self.config.config.device_name_prefix}-{self._device.device_id[:8]}"

    def _exchanging(self) -> None:
        assert self._device is not None and self._token is not None
        self._exchange = self.client.exchange_token(
            token=self._token,
            pubkey_b64=self._device.public_key_b64,
            device_name=self._device_name(),
            device_id=self._device.device_id,
        )
        self._token = None
        _log.info("token exchange successful server_id=%s", self._exchange.server_id)

    def _secrets_decrypting(self) -> None:
        assert self._exchange is not None
        password = self.identity.decrypt_sealed(self._exchange.sealed_password_b64)
        tunnel_token = self.identity.decrypt_sealed(self._exchange.sealed_tunnel_token_b64)
        webhook_secret = self.identity.decrypt_sealed(self._exchange.sealed_webhook_secret_b64)
        self._secrets = _Secrets(server_password=password, tunnel_token=tunnel_token, webhook_secret=webhook_secret)
        _log.info("sealed secrets decrypted")

    def _tunnel_installing(self) -> None:
        assert self._secrets is not None
        _log.info("installing tunnel service")
        result = self.tunnel.install(self._secrets.tunnel_token)
        if result.outcome is TunnelOutcome.CANCELLED:
            raise PrivilegeCancelledError(ELEVATION_MESSAGE)
        if result.outcome is TunnelOutcome.FAILURE:
            raise ProvisioningError(
                f"Failed to install tunnel: {result.message}",
                state=ProvisioningState.TUNNEL_INSTALLING.value,
            )

    def _registering(self) -> None:
        assert self._secrets is not None and self._exchange is not None and self._device is not None
        try:
            self.client.register_device(
                server_password=self._secrets.server_password,
                pubkey_b64=self._device.public_key_b64,
                device_id=self._device.device_id,
                relay_id=self._exchange.server_id,
            )
        except TransportError as exc:
            self._registered = False
            _log.warning("device registration failed status=%s: %s", exc.status_code, exc)
            return
        self._registered = True
        _log.info("device registration confirmed")

    def _webhook_registering(self) -> None:
        assert self._exchange is not None
        url = self.config.config.webhook_url(self._exchange.webhook_id)
        previous = self.config.config.webhook_id
        try:
            if previous and previous != self._exchange.webhook_id:
                # drop the subscription of the previous linkage
                self.webhooks.delete_url(self.config.config.webhook_url(previous))
            hook = self.webhooks.add(url, ["*"])
        except Exception as exc:
            self._webhook_registered = False
            _log.warning("webhook registration failed url=%s: %s", url, exc)
            return
        self._webhook_registered = True
        _log.info("webhook registered id=%s url=%s", hook.id, hook.url)

    def _config_persisting(self) -> None:
        assert self._secrets is not None and self._exchange is not None and self._device is not None
        self.identity.store_credentials(
            CredentialSet(
                server_password=self._secrets.server_password,
                webhook_secret=self._secrets.webhook_secret,
            )
        )
        server_address = normalize_server_address(self._exchange.host)
        self.config.update(
            server_id=self._exchange.server_id,
            server_address=server_address,
            webhook_id=self._exchange.webhook_id,
            password_stored_in_keychain=True,
            webhook_secret_stored_in_keychain=True,
            setup_complete=True,
        )
        self._result = ProvisioningResult(
            server_id=self._exchange.server_id,
            server_address=server_address,
            webhook_id=self._exchange.webhook_id,
            webhook_url=self.config.config.webhook_url(self._exchange.webhook_id),
            device_id=self._device.device_id,
            is_new_identity=self._is_new,
            registered=self._registered,
            webhook_registered=self._webhook_registered,
            user_email=self._exchange.user_email,
        )
        self._secrets = None
