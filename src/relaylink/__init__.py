"""Relay agent: secure device provisioning and authenticated webhook relay."""

__version__ = "0.1.0"
