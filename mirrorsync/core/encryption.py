"""Encryption for OAuth tokens at rest."""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

_ENCRYPTED_PREFIX = "enc:"


class TokenCipher:
    """
    Fernet wrapper used by the store for access/refresh tokens.

    With no key configured values pass through untouched. Encrypted values carry
    an "enc:" prefix so rows written before encryption was enabled still read.
    """

    def __init__(self, key: Optional[str] = None):
        self._fernet: Optional[Fernet] = Fernet(key.encode()) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if not value or self._fernet is None:
            return value
        if value.startswith(_ENCRYPTED_PREFIX):
            return value
        return _ENCRYPTED_PREFIX + self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not value or not value.startswith(_ENCRYPTED_PREFIX):
            return value
        if self._fernet is None:
            raise ValueError("Encrypted token found but TOKEN_ENCRYPTION_KEY is not configured")
        try:
            return self._fernet.decrypt(value[len(_ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken:
            raise ValueError("Invalid or corrupted encrypted token")
