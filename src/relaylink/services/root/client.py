from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping

import httpx

from relaylink.services.errors import TransportError, ValidationError

_log = logging.getLogger("relaylink.root")

EXCHANGE_PATH = "/api/provision/exchange"
REGISTER_PATH = "/api/provision/register"

_EXCHANGE_REQUIRED = (
    "host",
    "server_id",
    "webhook_id",
    "sealed_password_b64",
    "sealed_tunnel_token_b64",
    "sealed_webhook_secret_b64",
)


@dataclass(frozen=True, slots=True)
class ExchangeResponse:
    host: str
    server_id: str
    webhook_id: str
    sealed_password_b64: str
    sealed_tunnel_token_b64: str
    sealed_webhook_secret_b64: str
    user_email: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ExchangeResponse":
        if not isinstance(payload, Mapping):
            raise ValidationError("exchange response is not a JSON object")
        missing = [name for name in _EXCHANGE_REQUIRED if not payload.get(name)]
        if missing:
            raise ValidationError(f"exchange response missing: {', '.join(missing)}")
        email = payload.get("user_email")
        return cls(
            host=str(payload["host"]),
            server_id=str(payload["server_id"]),
            webhook_id=str(payload["webhook_id"]),
            sealed_password_b64=str(payload["sealed_password_b64"]),
            sealed_tunnel_token_b64=str(payload["sealed_tunnel_token_b64"]),
            sealed_webhook_secret_b64=str(payload["sealed_webhook_secret_b64"]),
            user_email=str(email) if email else None,
        )


@dataclass(slots=True)
class ControlPlaneClient:
    """HTTP client for the control plane provisioning endpoints."""

    base_url: str
    timeout: float = 30.0
    transport: httpx.BaseTransport | None = None
    default_headers: dict[str, str] = field(default_factory=dict)

    def exchange_token(self, *, token: str, pubkey_b64: str, device_name: str, device_id: str) -> ExchangeResponse:
        payload = {
            "token": token,
            "pubkey_b64": pubkey_b64,
            "device_name": device_name,
            "device_id": device_id,
        }
        _log.info("exchanging provision token with %s", self.base_url)
        content = self._request("POST", EXCHANGE_PATH, json=payload)
        return ExchangeResponse.from_payload(content)

    def register_device(self, *, server_password: str, pubkey_b64: str, device_id: str, relay_id: str) -> Any:
        headers = {"Authorization": f"Bearer {server_password}"}
        payload = {"pubkey_b64": pubkey_b64, "device_id": device_id, "relay_id": relay_id}
        _log.info("registering device with %s", self.base_url)
        return self._request("POST", REGISTER_PATH, json=payload, headers=headers)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        request_headers: MutableMapping[str, str] = dict(self.default_headers)
        if headers:
            request_headers.update({str(k): str(v) for k, v in headers.items()})
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, path, json=json, headers=request_headers)
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {path} failed: {exc}", status_code=0) from exc

        content: Any | None = None
        if response.content:
            try:
                content = response.json()
            except ValueError:
                content = response.text

        if response.status_code >= 400:
            message = response.text or f"HTTP {response.status_code}"
            if isinstance(content, Mapping):
                detail = content.get("detail") or content.get("message") or content.get("error")
                if isinstance(detail, str):
                    message = detail
            raise TransportError(message, status_code=response.status_code, payload=content)

        return content if content is not None else {}
