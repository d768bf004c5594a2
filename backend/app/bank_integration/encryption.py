"""
Token Encryption Module

Encrypts aggregator access and refresh tokens at rest with Fernet symmetric
encryption, keyed from the application's SECRET_KEY setting.
"""

from cryptography.fernet import Fernet, InvalidToken
from typing import Optional
import base64

from backend.config import get_settings


class TokenEncryption:
    """
    Encrypt and decrypt OAuth tokens for storage on BankConnection rows.

    Tokens are encrypted before they are written and decrypted only inside
    the sync path; they are never returned to API clients.
    """

    def __init__(self, secret_key: Optional[str] = None):
        """
        Args:
            secret_key: Key material; defaults to settings.secret_key.
                Padded or truncated to 32 bytes to form a Fernet key.
        """
        secret_key = secret_key or get_settings().secret_key
        key_bytes = secret_key.encode()[:32].ljust(32, b'0')
        self.cipher = Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Encrypt a token for database storage.

        Returns:
            Fernet token as text, or None when there is nothing to encrypt
        """
        if not token:
            return None
        return self.cipher.encrypt(token.encode()).decode()

    def decrypt(self, encrypted_token: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored token.

        Raises:
            ValueError: If the value was not produced with this key
        """
        if not encrypted_token:
            return None
        try:
            return self.cipher.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Stored token could not be decrypted with the configured SECRET_KEY") from e
