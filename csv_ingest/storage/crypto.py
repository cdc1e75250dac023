"""
AES-256-GCM cipher for data at rest.

Every encrypted column holds urlsafe base64 of (12-byte nonce || ciphertext+tag).
A fresh nonce is drawn per value, so equal plaintexts never share a
ciphertext; lookups go through digest(), a salted SHA-256 instead.
"""

import base64
import hashlib
import json
import os
from typing import Any, Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from csv_ingest.config import settings

logger = structlog.get_logger(__name__)

NONCE_SIZE = 12
AAD = b"csv-ingest:v1"
DECRYPTION_ERROR = "[Decryption Error]"

# Only for local development and tests
_DEV_KEY_HEX = "00" * 32
_DEV_SALT = "csv-ingest-dev-salt"


class CipherError(Exception):
    """Raised when a value cannot be decrypted or authenticated."""


class Cipher:
    def __init__(self, key_hex: Optional[str] = None, salt: Optional[str] = None):
        key_hex = key_hex if key_hex is not None else settings.ENCRYPTION_KEY
        if not key_hex:
            logger.warning("encryption_dev_key_in_use")
            key_hex = _DEV_KEY_HEX
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise CipherError("ENCRYPTION_KEY must be hex encoded") from e
        if len(key) != 32:
            raise CipherError(f"ENCRYPTION_KEY must be 32 bytes, got {len(key)}")

        self._aead = AESGCM(key)
        self._salt = (salt if salt is not None else settings.ENCRYPTION_SALT) or _DEV_SALT

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None or plaintext == "":
            return None
        nonce = os.urandom(NONCE_SIZE)
        ct = self._aead.encrypt(nonce, plaintext.encode("utf-8"), AAD)
        return base64.urlsafe_b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None or token == "":
            return None
        try:
            blob = base64.urlsafe_b64decode(token.encode("ascii"))
        except (ValueError, UnicodeEncodeError) as e:
            raise CipherError("ciphertext is not valid base64") from e
        if len(blob) <= NONCE_SIZE:
            raise CipherError("ciphertext too short")
        try:
            pt = self._aead.decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], AAD)
        except InvalidTag as e:
            raise CipherError("ciphertext failed authentication") from e
        return pt.decode("utf-8")

    def encrypt_json(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return self.encrypt(json.dumps(value, ensure_ascii=False, default=str))

    def decrypt_json(self, token: Optional[str]) -> Any:
        text = self.decrypt(token)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CipherError("decrypted payload is not JSON") from e

    def decrypt_or_sentinel(self, token: Optional[str]) -> Optional[str]:
        """Decrypt for display; a bad value must not break the surrounding listing."""
        try:
            return self.decrypt(token)
        except CipherError as e:
            logger.warning("decryption_failed", error=str(e))
            return DECRYPTION_ERROR

    def digest(self, value: str) -> str:
        return hashlib.sha256(f"{self._salt}:{value}".encode("utf-8")).hexdigest()
