"""
Authenticated encryption for stored provider secrets.

Values are sealed with AES-256-GCM under the instance key. The stored form is
``base64(nonce || ciphertext_with_tag)`` with a fresh 12-byte nonce per write.
"""

import base64
import binascii
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import ConfigError, ErrorCode

NONCE_SIZE = 12
KEY_SIZE = 32


def load_key(encoded_key: Optional[str]) -> bytes:
    """
    Decode and check the instance encryption key.

    Args:
        encoded_key: Base64 encoding of 32 random bytes

    Returns:
        Raw key bytes

    Raises:
        ConfigError: If the key is missing, not base64, or the wrong length
    """
    if not encoded_key:
        raise ConfigError(
            "Credential encryption key is not configured",
            error_code=ErrorCode.MISSING_REQUIRED,
        )
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError("Credential encryption key is not valid base64", cause=e) from e
    if len(key) != KEY_SIZE:
        raise ConfigError(
            f"Credential encryption key must be {KEY_SIZE} bytes",
            key_length=len(key),
        )
    return key


def generate_key() -> str:
    """Generate a new base64 encoded instance key."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def encrypt_value(key: bytes, value: str, associated_data: Optional[bytes] = None) -> str:
    """
    Encrypt a string.

    Args:
        key: Raw 32-byte key from load_key()
        value: Plaintext to seal
        associated_data: Optional bytes bound to the ciphertext (not stored)

    Returns:
        Base64 text of nonce plus ciphertext
    """
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, value.encode("utf-8"), associated_data)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_value(
    key: bytes, stored: Union[str, bytes], associated_data: Optional[bytes] = None
) -> Optional[str]:
    """
    Decrypt a value produced by encrypt_value().

    Returns None when the stored value is not a ciphertext sealed under this key,
    so callers can decide how to treat legacy rows.
    """
    if not stored:
        return None
    if isinstance(stored, bytes):
        stored = stored.decode("utf-8", errors="ignore")

    try:
        blob = base64.b64decode(stored, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(blob) <= NONCE_SIZE:
        return None

    nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, associated_data).decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        return None
