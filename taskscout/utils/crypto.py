"""OAuth token encryption at rest.

Uses Fernet (AES-128-CBC + HMAC) from the cryptography package. The key is
derived from ``token_encryption_key`` so any secret string works; without a
key tokens are stored as given and a warning is logged once.
"""

from __future__ import annotations

import base64
import hashlib

import structlog
from cryptography.fernet import Fernet, InvalidToken

from taskscout.errors import CredentialError

logger = structlog.get_logger().bind(component="crypto")


def _derive_key(secret: str) -> bytes:
    raw = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(raw)


class TokenCipher:
    """Symmetric encrypt/decrypt for credential fields."""

    def __init__(self, secret: str = "") -> None:
        self._fernet = Fernet(_derive_key(secret)) if secret else None
        if self._fernet is None:
            logger.warning("token_encryption_disabled", hint="set TOKEN_ENCRYPTION_KEY")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None or not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        if self._fernet is None or not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as exc:
            raise CredentialError("stored token could not be decrypted; key changed?") from exc
