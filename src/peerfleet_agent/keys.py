"""Node key handling.

Ethereum node keys are secp256k1 private keys written as 64 hex characters,
usually with a leading "0x". The node's public identity (the id part of its
enode URL) is the uncompressed public point without the 0x04 marker.
"""

import base64
import binascii
import re

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .errors import InvalidKeyMaterial

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_HEX_KEY = re.compile(r"^(0x)?([0-9a-fA-F]{64})$")


def strip_hex_prefix(private_key: str) -> str:
    """Validate a hex private key and return it without its 0x prefix.

    Raises:
        InvalidKeyMaterial: if the value is not exactly 32 bytes of hex.
    """
    if not isinstance(private_key, str):
        raise InvalidKeyMaterial("private key must be a hex string")
    match = _HEX_KEY.match(private_key.strip())
    if not match:
        raise InvalidKeyMaterial("private key must be 64 hex characters, optionally 0x-prefixed")
    return match.group(2).lower()


def derive_public_key(private_key: str) -> str:
    """Derive the secp256k1 public key of a hex private key.

    Args:
        private_key: 64 hex characters, with or without 0x prefix

    Returns:
        128 lowercase hex characters (X || Y)

    Raises:
        InvalidKeyMaterial: if the key is malformed or outside the curve order
    """
    secret = int(strip_hex_prefix(private_key), 16)
    if not 0 < secret < SECP256K1_ORDER:
        raise InvalidKeyMaterial("private key is out of range for secp256k1")

    key = ec.derive_private_key(secret, ec.SECP256K1())
    point = key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    return point[1:].hex()


def validate_base64_key(private_key: str) -> str:
    """Check that a key is non-empty base64 (ipfs identity keys)."""
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKeyMaterial("private key must be a non-empty base64 string")
    try:
        base64.b64decode(private_key.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidKeyMaterial("private key is not valid base64")
    return private_key.strip()
