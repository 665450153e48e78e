"""Fernet-based encryption for persisted analysis state.

Cached analysis results embed the health snapshot they were computed from,
so values written to the key-value store are encrypted when a key is
configured. Rate-limit counters carry no health data but go through the
same store and are encrypted alongside.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class ValueEncryptor:
    """Encrypts and decrypts opaque byte values using Fernet symmetric encryption.

    Usage::

        encryptor = ValueEncryptor(key="...")
        token = encryptor.encrypt(b'{"steps": 8000}')
        encryptor.decrypt(token)  # b'{"steps": 8000}'
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key.

        Args:
            key: A valid Fernet key string. Generate with
                 ``ValueEncryptor.generate_key()``.

        Raises:
            EncryptionError: If the key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, value: bytes) -> bytes:
        """Encrypt raw bytes to a Fernet token."""
        try:
            return self._fernet.encrypt(value)
        except TypeError as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc

    def decrypt(self, token: bytes) -> bytes:
        """Decrypt a Fernet token back to the original bytes.

        Raises:
            EncryptionError: If the token is invalid or was produced with another key.
        """
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        except TypeError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key as a URL-safe base64 string."""
        return Fernet.generate_key().decode("utf-8")
