"""Control plane connectivity for the relay agent."""

from .client import ControlPlaneClient, ExchangeResponse

__all__ = ["ControlPlaneClient", "ExchangeResponse"]
