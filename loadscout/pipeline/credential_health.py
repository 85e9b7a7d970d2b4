"""Periodic session check for every stored credential."""

import logging
import sqlite3

from loadscout.core.db import list_credential_user_ids
from loadscout.core.errors import DecryptionError
from loadscout.core.schemas import CredentialHealthResult
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)


async def check_all_credentials(
    conn: sqlite3.Connection,
    vault: CredentialVault,
    client: LoadBoardClient,
) -> CredentialHealthResult:
    """Ping the provider with each stored session and record the verdict.

    A session that fails the check, or cannot be decrypted, is marked
    invalid so the user is prompted to reconnect.
    """
    result = CredentialHealthResult()
    for user_id in list_credential_user_ids(conn):
        try:
            credentials = vault.load(user_id)
        except DecryptionError as e:
            result.expired_count += 1
            result.errors.append(f"User {user_id}: {e}")
            continue

        check = await client.test_connection(
            credentials.session_cookie.get_secret_value(),
            credentials.csrf_token.get_secret_value(),
        )
        if check.success:
            vault.mark_valid(user_id)
            result.valid_count += 1
        else:
            vault.mark_invalid(user_id, check.error or "Session check failed")
            result.expired_count += 1
            result.errors.append(f"User {user_id}: {check.error}")

    logger.info(
        "Credential check: %d valid, %d expired",
        result.valid_count, result.expired_count,
    )
    return result
