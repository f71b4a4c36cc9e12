"""
Encryption of OAuth tokens at rest.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class TokenCipher:
    """
    Fernet symmetric encryption for token columns.

    Any string can be used as a key: values that are not a valid Fernet
    key are stretched with SHA-256.
    """

    def __init__(self, key: Optional[str] = None):
        self._fernet = Fernet(self._derive_key(key))

    @staticmethod
    def _derive_key(key: Optional[str]) -> bytes:
        if not key:
            # Generate a key if not provided (will be lost on restart)
            logger.warning(
                "CLOUDSYNC_TOKEN_ENCRYPTION_KEY not set. "
                "Using ephemeral key - stored tokens will be unreadable after restart."
            )
            return Fernet.generate_key()

        if len(key) == 44:  # Fernet keys are 44 chars base64
            try:
                Fernet(key.encode())
                return key.encode()
            except ValueError:
                pass

        return base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest())

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        """Decrypt a stored token. Unreadable values come back as None."""
        if value is None:
            return None
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored token; the encryption key may have changed")
            return None
