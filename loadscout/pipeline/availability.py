"""Availability verifier: re-checks a user's saved loads against fresh results.

Saved loads are grouped by origin city so each distinct origin costs one
provider call, made with a wide radius because the goal is presence
detection. A failed group is marked ``unknown``; an unreachable provider is
not evidence that a load is gone.
"""

import logging
import sqlite3
from collections import defaultdict

from loadscout.core.config import Settings
from loadscout.core.db import get_interested_loads, update_interested_status
from loadscout.core.errors import ApiAuthError, ApiError
from loadscout.core.schemas import (
    AvailabilityResult,
    AvailabilityStatus,
    InterestedLoad,
    SearchCriteria,
    utc_now,
)
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)


def group_by_origin(loads: list[InterestedLoad]) -> dict[str, list[InterestedLoad]]:
    """Group saved loads by origin city, preserving first-seen order."""
    groups: dict[str, list[InterestedLoad]] = defaultdict(list)
    for load in loads:
        groups[load.origin_city].append(load)
    return dict(groups)


class AvailabilityVerifier:
    def __init__(
        self,
        conn: sqlite3.Connection,
        vault: CredentialVault,
        client: LoadBoardClient,
        settings: Settings,
    ) -> None:
        self._conn = conn
        self._vault = vault
        self._client = client
        self._config = settings.availability

    async def check_interested(self, user_id: str) -> list[AvailabilityResult]:
        """Reconcile every saved load of a user to available, expired or unknown.

        Credential errors propagate before any load is touched.
        """
        saved = get_interested_loads(self._conn, user_id)
        if not saved:
            logger.info("No saved loads to check for user %s", user_id)
            return []

        credentials = self._vault.load(user_id)
        cookie = credentials.session_cookie.get_secret_value()
        csrf = credentials.csrf_token.get_secret_value()

        statuses: dict[int, AvailabilityStatus] = {}
        for origin_city, group in group_by_origin(saved).items():
            sample = group[0].details
            criteria = SearchCriteria(
                origin_city=sample.get("origin_city") or origin_city,
                origin_state=sample.get("origin_state") or None,
                pickup_distance=self._config.search_radius_mi,
            )
            try:
                fresh = await self._client.fetch_loads(
                    cookie, csrf, criteria, self._config.fetch_timeout_ms,
                )
            except ApiError as e:
                logger.warning("Availability check for %s failed: %s", origin_city, e)
                if isinstance(e, ApiAuthError):
                    self._vault.mark_invalid(user_id, str(e))
                for load in group:
                    statuses[load.id] = "unknown"
                continue

            fresh_ids = {load.id for load in fresh}
            for load in group:
                statuses[load.id] = (
                    "available" if load.provider_load_id in fresh_ids else "expired"
                )

        checked_at = utc_now()
        results: list[AvailabilityResult] = []
        for load in saved:
            status = statuses[load.id]
            update_interested_status(self._conn, load.id, status, checked_at)
            results.append(AvailabilityResult(id=load.id, status=status))

        logger.info(
            "Checked %d saved loads across %d origins for user %s",
            len(saved), len(group_by_origin(saved)), user_id,
        )
        return results
