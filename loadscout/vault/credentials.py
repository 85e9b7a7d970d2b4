"""Credential vault: the only path between plaintext secrets and the store."""

import logging
import sqlite3

from pydantic import SecretStr

from loadscout.core.db import (
    get_credentials,
    get_latest_valid_credentials,
    set_credentials_validity,
    upsert_credentials,
)
from loadscout.core.errors import CredentialsNotFoundError, DecryptionError
from loadscout.core.schemas import SessionCredentials
from loadscout.vault.cipher import CredentialCipher

logger = logging.getLogger(__name__)


class CredentialVault:
    """Encrypts on write, decrypts on read, and tracks credential validity."""

    def __init__(self, conn: sqlite3.Connection, cipher: CredentialCipher) -> None:
        self._conn = conn
        self._cipher = cipher

    def store(
        self,
        user_id: str,
        session_cookie: str,
        csrf_token: str,
        email: str | None = None,
        password: str | None = None,
    ) -> None:
        """Encrypt and persist a user's session, marking it valid."""
        encrypt = self._cipher.encrypt
        upsert_credentials(
            self._conn,
            user_id,
            encrypt(session_cookie),
            encrypt(csrf_token),
            encrypted_email=encrypt(email) if email else None,
            encrypted_password=encrypt(password) if password else None,
        )
        logger.info("Stored credentials for user %s", user_id)

    def load(self, user_id: str) -> SessionCredentials:
        """Decrypt a user's session.

        Raises CredentialsNotFoundError when no record exists. A record that
        fails to decrypt is marked invalid before DecryptionError propagates.
        """
        row = get_credentials(self._conn, user_id)
        if row is None:
            msg = f"No credentials found for user {user_id}"
            raise CredentialsNotFoundError(msg)
        return self._decrypt_row(row)

    def load_pooled(self) -> SessionCredentials | None:
        """Return the most recently validated session, for guest sandbox scans."""
        row = get_latest_valid_credentials(self._conn)
        if row is None:
            return None
        return self._decrypt_row(row)

    def mark_invalid(self, user_id: str, reason: str) -> None:
        set_credentials_validity(self._conn, user_id, False, reason)
        logger.warning("Credentials for user %s marked invalid: %s", user_id, reason)

    def mark_valid(self, user_id: str) -> None:
        set_credentials_validity(self._conn, user_id, True)

    def _decrypt_row(self, row: sqlite3.Row) -> SessionCredentials:
        user_id = row["user_id"]
        try:
            session_cookie = self._cipher.decrypt(row["encrypted_session_cookie"])
            csrf_token = (
                self._cipher.decrypt(row["encrypted_csrf_token"])
                if row["encrypted_csrf_token"]
                else ""
            )
            email = (
                self._cipher.decrypt(row["encrypted_email"])
                if row["encrypted_email"]
                else None
            )
        except DecryptionError as e:
            self.mark_invalid(user_id, f"Decryption failed: {e}")
            raise
        return SessionCredentials(
            user_id=user_id,
            session_cookie=SecretStr(session_cookie),
            csrf_token=SecretStr(csrf_token),
            email=SecretStr(email) if email is not None else None,
        )
