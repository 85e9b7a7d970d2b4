"""Authenticated symmetric encryption for per-user session secrets.

AES-256-GCM with a fresh 12-byte nonce per call. The stored blob is the
url-safe base64 encoding of ``nonce || ciphertext || tag``.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from loadscout.core.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def _decode_key(key: str | bytes) -> bytes:
    """Accept raw bytes, a 64-char hex string or url-safe base64 of 32 bytes."""
    if isinstance(key, bytes):
        return key
    key = key.strip()
    if len(key) == KEY_BYTES * 2:
        try:
            return bytes.fromhex(key)
        except ValueError:
            pass
    try:
        return base64.urlsafe_b64decode(key + "=" * (-len(key) % 4))
    except (binascii.Error, ValueError) as e:
        msg = "Encryption key is neither hex nor base64"
        raise ConfigurationError(msg) from e


class CredentialCipher:
    """Encrypts and decrypts secret strings with one process-wide key."""

    def __init__(self, key: str | bytes) -> None:
        raw = _decode_key(key)
        if len(raw) != KEY_BYTES:
            msg = f"Encryption key must be {KEY_BYTES} bytes, got {len(raw)}"
            raise ConfigurationError(msg)
        self._aead = AESGCM(raw)

    @staticmethod
    def generate_key() -> str:
        """Return a new random key, hex-encoded."""
        return AESGCM.generate_key(bit_length=KEY_BYTES * 8).hex()

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Return the plaintext or raise DecryptionError.

        Raised for a failed integrity check (tampering or wrong key) as well
        as for malformed input (bad base64, too short).
        """
        try:
            raw = base64.urlsafe_b64decode(blob.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            msg = "Ciphertext is not valid base64"
            raise DecryptionError(msg) from e
        if len(raw) < NONCE_BYTES + TAG_BYTES:
            msg = "Ciphertext is too short"
            raise DecryptionError(msg)
        nonce, sealed = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            msg = "Ciphertext failed integrity check"
            raise DecryptionError(msg) from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            msg = "Decrypted data is not UTF-8"
            raise DecryptionError(msg) from e
