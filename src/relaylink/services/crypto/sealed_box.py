"""Anonymous-sender sealed boxes (libsodium ``crypto_box_seal``).

The control plane seals secrets to the device public key; the agent only ever
opens them. ``seal`` exists for tests and for tooling that plays the server
side. Opening fails closed: any mismatch between the keypair halves, a wrong
recipient, or a tampered ciphertext raises :class:`DecryptionError` and never
returns plaintext.
"""

from __future__ import annotations

import binascii

import nacl.exceptions
from nacl.public import PrivateKey, PublicKey, SealedBox

from relaylink.services.errors import DecryptionError

from .keys import KEY_SIZE, b64decode, b64encode

__all__ = ["seal", "open_sealed", "seal_b64", "open_b64"]


def _public(raw: bytes) -> PublicKey:
    if len(raw) != KEY_SIZE:
        raise DecryptionError(f"public key must be {KEY_SIZE} bytes")
    return PublicKey(raw)


def seal(plaintext: bytes, recipient_public_key: bytes) -> bytes:
    return bytes(SealedBox(_public(recipient_public_key)).encrypt(plaintext))


def open_sealed(ciphertext: bytes, recipient_public_key: bytes, recipient_private_key: bytes) -> bytes:
    if len(recipient_private_key) != KEY_SIZE:
        raise DecryptionError(f"private key must be {KEY_SIZE} bytes")
    private = PrivateKey(recipient_private_key)
    if bytes(private.public_key) != bytes(_public(recipient_public_key)):
        raise DecryptionError("public key does not belong to private key")
    try:
        return SealedBox(private).decrypt(ciphertext)
    except nacl.exceptions.CryptoError as exc:
        raise DecryptionError("sealed box could not be opened") from exc


def seal_b64(plaintext: str, public_key_b64: str) -> str:
    try:
        public = b64decode(public_key_b64)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("public key is not valid base64") from exc
    return b64encode(seal(plaintext.encode("utf-8"), public))


def open_b64(sealed_b64: str, public_key_b64: str, private_key_b64: str) -> str:
    try:
        ciphertext = b64decode(sealed_b64)
        public = b64decode(public_key_b64)
        private = b64decode(private_key_b64)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("sealed value is not valid base64") from exc
    plaintext = open_sealed(ciphertext, public, private)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("sealed value is not utf-8 text") from exc
