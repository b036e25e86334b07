"""Key generation and sealed-box helpers for device provisioning."""

from .keys import X25519Keypair, b64decode, b64encode, generate_x25519_keypair
from .sealed_box import open_b64, open_sealed, seal, seal_b64

__all__ = [
    "X25519Keypair",
    "generate_x25519_keypair",
    "b64encode",
    "b64decode",
    "seal",
    "open_sealed",
    "seal_b64",
    "open_b64",
]
