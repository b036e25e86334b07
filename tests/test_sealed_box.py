from __future__ import annotations

import pytest

from relaylink.services.crypto import (
    b64decode,
    b64encode,
    generate_x25519_keypair,
    open_b64,
    open_sealed,
    seal,
    seal_b64,
)
from relaylink.services.errors import CryptoError, DecryptionError


def test_keypair_is_raw_32_bytes():
    keypair = generate_x25519_keypair()
    assert len(keypair.public_key) == 32
    assert len(keypair.private_key) == 32
    assert b64decode(keypair.public_key_b64) == keypair.public_key


def test_seal_and_open_with_recipient_keypair():
    keypair = generate_x25519_keypair()
    sealed = seal(b"hunter2", keypair.public_key)
    assert sealed != b"hunter2"
    assert open_sealed(sealed, keypair.public_key, keypair.private_key) == b"hunter2"


def test_sealing_is_not_deterministic():
    keypair = generate_x25519_keypair()
    assert seal(b"same", keypair.public_key) != seal(b"same", keypair.public_key)


def test_wrong_recipient_cannot_open():
    recipient = generate_x25519_keypair()
    other = generate_x25519_keypair()
    sealed = seal(b"secret", recipient.public_key)
    with pytest.raises(DecryptionError):
        open_sealed(sealed, other.public_key, other.private_key)


def test_tampered_ciphertext_fails_closed():
    keypair = generate_x25519_keypair()
    sealed = bytearray(seal(b"secret", keypair.public_key))
    sealed[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        open_sealed(bytes(sealed), keypair.public_key, keypair.private_key)


def test_mismatched_keypair_halves_rejected():
    a = generate_x25519_keypair()
    b = generate_x25519_keypair()
    sealed = seal(b"secret", a.public_key)
    with pytest.raises(DecryptionError):
        open_sealed(sealed, b.public_key, a.private_key)


def test_short_keys_rejected():
    keypair = generate_x25519_keypair()
    sealed = seal(b"x", keypair.public_key)
    with pytest.raises(DecryptionError):
        open_sealed(sealed, keypair.public_key, keypair.private_key[:16])


def test_b64_helpers_carry_text():
    keypair = generate_x25519_keypair()
    sealed = seal_b64("pässwörd", keypair.public_key_b64)
    assert open_b64(sealed, keypair.public_key_b64, keypair.private_key_b64) == "pässwörd"


def test_invalid_base64_is_a_crypto_error():
    keypair = generate_x25519_keypair()
    with pytest.raises(CryptoError):
        open_b64("not base64!!", keypair.public_key_b64, keypair.private_key_b64)


def test_decryption_error_is_crypto_error():
    assert DecryptionError is CryptoError
    assert b64encode(b"\x00\x01") == "AAE="
