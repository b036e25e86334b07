from __future__ import annotations

import base64
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519

KEY_SIZE = 32


@dataclass(frozen=True, slots=True)
class X25519Keypair:
    public_key: bytes
    private_key: bytes

    @property
    def public_key_b64(self) -> str:
        return b64encode(self.public_key)

    @property
    def private_key_b64(self) -> str:
        return b64encode(self.private_key)


def generate_x25519_keypair() -> X25519Keypair:
    """Return a raw 32-byte X25519 keypair usable with libsodium ``crypto_box``."""
    private_key = x25519.X25519PrivateKey.generate()
    private_raw = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return X25519Keypair(public_key=public_raw, private_key=private_raw)


def b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


__all__ = ["KEY_SIZE", "X25519Keypair", "generate_x25519_keypair", "b64encode", "b64decode"]
