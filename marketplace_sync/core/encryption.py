"""
Symmetric encryption for OAuth tokens at rest (Fernet / AES-128-CBC + HMAC).
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from marketplace_sync.core.config import settings


class EncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted."""

    pass


class TokenCipher:
    """
    Encrypts and decrypts credential strings.

    Ciphertexts are urlsafe base64 text and can be stored in plain TEXT columns.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        key = key if key is not None else settings.encryption_key
        if not key:
            raise EncryptionError("ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"Invalid encryption key: {e}") from e

    @staticmethod
    def generate_key() -> str:
        """Generate a fresh key suitable for ENCRYPTION_KEY."""
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            raise EncryptionError("Nothing to decrypt")
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise EncryptionError("Decryption failed: invalid token or key") from e
