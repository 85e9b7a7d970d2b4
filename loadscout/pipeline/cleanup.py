"""Retention cleanup for derived records.

Each pass is idempotent and safe to run alone or repeatedly:
  a. suggestions past ``expires_at``
  b. suggestions in a terminal failure status older than the failure window
  c. suggestions whose anchor saved load no longer exists (set difference,
     since suggestions carry no foreign key to their anchor)
Guest data has its own pass; guest found loads go with their criteria
through the foreign-key cascade.
"""

import logging
import sqlite3
from datetime import datetime, timedelta

from loadscout.core.config import Settings
from loadscout.core.db import (
    delete_guest_data_before,
    delete_suggestions,
    delete_suggestions_expired_before,
    delete_suggestions_with_status_before,
    existing_interested_ids,
    list_suggestion_anchors,
)
from loadscout.core.schemas import (
    FAILED_BACKHAUL_STATUSES,
    CleanupResult,
    GuestCleanupResult,
    utc_now,
)

logger = logging.getLogger(__name__)


class RetentionCleanup:
    def __init__(self, conn: sqlite3.Connection, settings: Settings) -> None:
        self._conn = conn
        self._config = settings.retention

    def purge_expired(self, now: datetime | None = None) -> int:
        deleted = delete_suggestions_expired_before(self._conn, now or utc_now())
        logger.info("Deleted %d expired backhaul suggestions", deleted)
        return deleted

    def purge_failed(self, now: datetime | None = None) -> int:
        cutoff = (now or utc_now()) - timedelta(days=self._config.failed_suggestion_days)
        deleted = delete_suggestions_with_status_before(
            self._conn, FAILED_BACKHAUL_STATUSES, cutoff,
        )
        logger.info("Deleted %d stale failed backhaul suggestions", deleted)
        return deleted

    def purge_orphaned(self) -> int:
        anchors = list_suggestion_anchors(self._conn)
        if not anchors:
            return 0
        alive = existing_interested_ids(self._conn, {saved_id for _, saved_id in anchors})
        orphans = [sid for sid, saved_id in anchors if saved_id not in alive]
        deleted = delete_suggestions(self._conn, orphans)
        logger.info("Deleted %d orphaned backhaul suggestions", deleted)
        return deleted

    def run(self, now: datetime | None = None) -> CleanupResult:
        """Run all three suggestion passes with one reference time."""
        now = now or utc_now()
        return CleanupResult(
            expired=self.purge_expired(now),
            failed=self.purge_failed(now),
            orphaned=self.purge_orphaned(),
        )

    def purge_guest_data(self, now: datetime | None = None) -> GuestCleanupResult:
        cutoff = (now or utc_now()) - timedelta(days=self._config.guest_data_days)
        sessions, criteria, interested = delete_guest_data_before(self._conn, cutoff)
        logger.info(
            "Guest cleanup before %s: %d sessions, %d criteria, %d saved loads",
            cutoff.isoformat(), sessions, criteria, interested,
        )
        return GuestCleanupResult(
            cutoff=cutoff,
            guest_sessions=sessions,
            guest_search_criteria=criteria,
            guest_interested_loads=interested,
        )
