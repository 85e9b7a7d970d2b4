"""Orchestrator: wires vault, provider client, filter chain, and DB write.

Data flow per user:
  1. Load active criteria for the requested scope
  2. Decrypt the user's session once
  3. Per criterion: expand state pairs → provider queries → merge by id
  4. Filter chain (client-side rate floors)
  5. Insert-if-absent per (criteria id, provider load id)
  6. Record per-criterion scan status
"""

import asyncio
import logging
import sqlite3
from datetime import timedelta

from loadscout.core.config import Settings
from loadscout.core.db import (
    get_active_criteria,
    insert_found_load_if_absent,
    list_users_with_active_criteria,
    update_criteria_scan_status,
)
from loadscout.core.errors import (
    ApiAuthError,
    ApiError,
    CredentialsNotFoundError,
    DecryptionError,
)
from loadscout.core.schemas import (
    LoadRecord,
    ScanAllResult,
    ScanResult,
    ScanScope,
    SearchCriteria,
    SessionCredentials,
    utc_now,
)
from loadscout.pipeline.matcher import DeduplicationFilter, criteria_filters, run_filter_chain
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)

GUEST_RATE_LIMITED = "Guest scans are rate-limited. Please wait a moment and try again."
NO_POOLED_CREDENTIALS = "No valid credentials available for guest sandbox scans"


class ScanOrchestrator:
    """Runs criterion scans for one user, all users, or a guest session.

    Concurrent ``scan_user`` calls with the same user id, criterion id and
    scope share one in-flight scan instead of racing each other.
    """

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
        self._settings = settings
        self._inflight: dict[tuple[str, int | None, ScanScope], asyncio.Task[ScanResult]] = {}

    # --- Authenticated users ---

    async def scan_user(
        self,
        user_id: str,
        criteria_id: int | None = None,
        scope: ScanScope = "fronthaul",
    ) -> ScanResult:
        """Scan a user's active criteria and persist loads not seen before."""
        key = (user_id, criteria_id, scope)
        running = self._inflight.get(key)
        if running is not None:
            logger.info("Scan already running for user %s (%s), joining it", user_id, scope)
            return await asyncio.shield(running)

        task = asyncio.ensure_future(self._scan_user(user_id, criteria_id, scope))
        self._inflight[key] = task
        try:
            return await task
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _scan_user(
        self, user_id: str, criteria_id: int | None, scope: ScanScope,
    ) -> ScanResult:
        criteria_list = get_active_criteria(
            self._conn, user_id, scope=scope, criteria_id=criteria_id,
        )
        if not criteria_list:
            logger.info("No active criteria for user %s", user_id)
            return ScanResult(success=True, loads_found=0)

        try:
            credentials = self._vault.load(user_id)
        except (CredentialsNotFoundError, DecryptionError) as e:
            logger.warning("Cannot scan for user %s: %s", user_id, e)
            return ScanResult(success=False, loads_found=0, error=str(e))

        logger.info("Scanning %d criteria for user %s", len(criteria_list), user_id)
        total_new = 0
        errors: list[str] = []

        for criteria in criteria_list:
            try:
                total_new += await self._scan_criterion(credentials, criteria, guest=False)
            except ApiAuthError as e:
                errors.append(str(e))
                self._vault.mark_invalid(user_id, str(e))
                logger.warning("Session expired for user %s, stopping scan", user_id)
                break
            except ApiError as e:
                errors.append(str(e))

        if errors and total_new == 0:
            return ScanResult(success=False, loads_found=0, error=errors[0])

        logger.info("Scan complete for user %s: %d new loads", user_id, total_new)
        return ScanResult(success=True, loads_found=total_new)

    async def scan_all_users(self) -> ScanAllResult:
        """Scan every user with an active criterion.

        Users run concurrently up to ``scan.max_concurrent_users``; one user's
        failure is recorded in ``errors`` and never aborts the others.
        """
        user_ids = list_users_with_active_criteria(self._conn)
        semaphore = asyncio.Semaphore(self._settings.scan.max_concurrent_users)

        async def bounded(user_id: str) -> ScanResult:
            async with semaphore:
                try:
                    return await self.scan_user(user_id)
                except Exception as e:
                    logger.exception("Scan for user %s failed", user_id)
                    return ScanResult(success=False, loads_found=0, error=str(e) or type(e).__name__)

        results = await asyncio.gather(*(bounded(u) for u in user_ids))

        summary = ScanAllResult(total_scanned=len(user_ids))
        for user_id, result in zip(user_ids, results):
            if result.success:
                summary.total_loads_found += result.loads_found
            else:
                summary.errors.append(f"User {user_id}: {result.error}")

        logger.info(
            "Scanned %d users: %d new loads, %d errors",
            summary.total_scanned, summary.total_loads_found, len(summary.errors),
        )
        return summary

    # --- Guest sandbox ---

    async def scan_guest_session(self, token: str) -> ScanResult:
        """Scan a guest session's recent criteria with a pooled credential."""
        guest = self._settings.guest
        now = utc_now()
        criteria_list = get_active_criteria(
            self._conn,
            token,
            scope="all",
            guest=True,
            created_after=now - timedelta(days=self._settings.retention.guest_data_days),
            limit=guest.max_criteria,
        )
        if not criteria_list:
            return ScanResult(success=True, loads_found=0)

        scanned = [c.last_scanned_at for c in criteria_list if c.last_scanned_at is not None]
        if scanned and (now - max(scanned)).total_seconds() < guest.rate_limit_seconds:
            return ScanResult(success=False, loads_found=0, error=GUEST_RATE_LIMITED)

        try:
            credentials = self._vault.load_pooled()
        except DecryptionError as e:
            return ScanResult(success=False, loads_found=0, error=str(e))
        if credentials is None:
            return ScanResult(success=False, loads_found=0, error=NO_POOLED_CREDENTIALS)

        total_new = 0
        for criteria in criteria_list:
            try:
                total_new += await self._scan_criterion(credentials, criteria, guest=True)
            except ApiAuthError as e:
                self._vault.mark_invalid(credentials.user_id, str(e))
                break
            except ApiError:
                continue
        return ScanResult(success=True, loads_found=total_new)

    # --- Shared ---

    async def _scan_criterion(
        self,
        credentials: SessionCredentials,
        criteria: SearchCriteria,
        *,
        guest: bool,
    ) -> int:
        """Fetch, filter and persist one criterion. Returns the number of new loads.

        Any failure is recorded on the criterion, then re-raised for the caller.
        """
        if criteria.id is None:
            msg = "Cannot scan a criterion that has not been saved"
            raise ValueError(msg)
        update_criteria_scan_status(
            self._conn, criteria.id, "scanning", scanned_at=utc_now(), guest=guest,
        )
        logger.info(
            "Processing criteria %d: %s -> %s",
            criteria.id, criteria.origin_city, criteria.dest_city or "Any",
        )
        try:
            loads = await self._fetch_criterion(credentials, criteria)
            if guest:
                loads = loads[: self._settings.guest.max_loads_per_criteria]

            now = utc_now()
            new_count = 0
            for load in loads:
                if insert_found_load_if_absent(self._conn, criteria.id, load, guest=guest, now=now):
                    new_count += 1
        except Exception as e:
            logger.warning("Criteria %d failed: %s", criteria.id, e)
            update_criteria_scan_status(
                self._conn, criteria.id, "error", error=str(e) or type(e).__name__, guest=guest,
            )
            raise

        update_criteria_scan_status(
            self._conn, criteria.id, "success", loads_found=new_count, guest=guest,
        )
        logger.info(
            "Criteria %d: %d fetched, %d new", criteria.id, len(loads), new_count,
        )
        return new_count

    async def _fetch_criterion(
        self, credentials: SessionCredentials, criteria: SearchCriteria,
    ) -> list[LoadRecord]:
        """Query every (origin state, destination state) pair and merge by load id."""
        dedup = DeduplicationFilter()
        merged: list[LoadRecord] = []
        for origin_state, dest_state in criteria.state_pairs():
            loads = await self._client.fetch_loads(
                credentials.session_cookie.get_secret_value(),
                credentials.csrf_token.get_secret_value(),
                criteria.for_states(origin_state, dest_state),
                self._settings.scan.fetch_timeout_ms,
            )
            merged.extend(dedup(loads))
        return run_filter_chain(merged, criteria_filters(criteria))
