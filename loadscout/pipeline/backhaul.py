"""Backhaul suggestion engine.

For a saved load flagged for backhaul matching, the anchor's destination
becomes the origin of a reciprocal search, one query per preferred
destination state. Candidates are filtered by the user's preferences,
ranked by rate per mile and stored as a SuggestedBackhaul with an expiry.

Terminal statuses:
  completed       - at least one candidate survived the filters
  no_results      - searches ran, nothing survived
  no_preferences  - no preferred destination states configured
  error           - any fetch failed or the anchor lacks a destination
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from loadscout.core.config import Settings
from loadscout.core.db import (
    get_backhaul_anchor_loads,
    get_preferences,
    get_suggestion,
    list_users_with_backhaul_requests,
    upsert_suggestion,
)
from loadscout.core.errors import ApiAuthError, ApiError, CredentialsNotFoundError, DecryptionError
from loadscout.core.schemas import (
    BackhaulOutcome,
    BackhaulPreferences,
    BackhaulScanResult,
    InterestedLoad,
    LoadRecord,
    SearchCriteria,
    SessionCredentials,
    parse_when,
    utc_now,
)
from loadscout.pipeline.matcher import (
    AvoidStatesFilter,
    DeduplicationFilter,
    MaxDeadheadFilter,
    MinRpmFilter,
    PickupAfterFilter,
    rank_by_rpm,
    run_filter_chain,
)
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)

MISSING_DESTINATION = "Saved load missing destination city/state"


def anchor_destination(details: dict[str, Any]) -> tuple[str | None, str | None]:
    city = details.get("dest_city") or details.get("destination_city")
    state = details.get("dest_state") or details.get("destination_state")
    return city or None, state or None


def backhaul_pickup_date(details: dict[str, Any], now: datetime) -> str:
    """Earliest pickup date for the return trip, as YYYY-MM-DD.

    Delivery date + 1 day, else anchor pickup + 2 days, else tomorrow.
    """
    delivery = parse_when(details.get("delivery_date") or details.get("dest_delivery_date"))
    if delivery is not None:
        return (delivery + timedelta(days=1)).date().isoformat()
    pickup = parse_when(details.get("pickup_date") or details.get("origin_pickup_date"))
    if pickup is not None:
        return (pickup + timedelta(days=2)).date().isoformat()
    return (now + timedelta(days=1)).date().isoformat()


def anchor_available_at(details: dict[str, Any]) -> datetime | None:
    """When the truck is free again: delivery, else anchor pickup + 2 days."""
    delivery = parse_when(details.get("delivery_date") or details.get("dest_delivery_date"))
    if delivery is not None:
        return delivery
    pickup = parse_when(details.get("pickup_date") or details.get("origin_pickup_date"))
    if pickup is not None:
        return pickup + timedelta(days=2)
    return None


def summarize_load(load: LoadRecord) -> dict[str, Any]:
    return {
        "id": load.id,
        "origin_city": load.origin_city,
        "origin_state": load.origin_state,
        "dest_city": load.dest_city,
        "dest_state": load.dest_state,
        "rate": load.rate,
        "distance": load.distance_mi,
        "rpm": round(load.rpm, 2),
        "deadhead": load.deadhead_mi,
        "equipment": list(load.equipment),
        "pickup_date": load.pickup_date,
    }


class BackhaulSuggester:
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
        self._config = settings.backhaul

    async def suggest_for_load(
        self,
        user_id: str,
        saved_load: InterestedLoad,
        preferences: BackhaulPreferences | None,
        *,
        credentials: SessionCredentials | None = None,
    ) -> BackhaulOutcome:
        """Search and store backhaul candidates for one saved load.

        Every outcome, including failures, is persisted so cleanup can age
        it out. Missing preferences are treated as defaults, which have no
        destination states and so yield ``no_preferences``.
        """
        prefs = preferences or BackhaulPreferences()
        now = utc_now()
        dest_city, dest_state = anchor_destination(saved_load.details)
        base = {
            "owner_id": user_id,
            "saved_load_id": saved_load.id,
            "saved_load_provider_id": saved_load.provider_load_id,
            "origin_city": dest_city or "Unknown",
            "origin_state": dest_state or "",
        }

        if dest_city is None or dest_state is None:
            upsert_suggestion(
                self._conn, **base, status="error", error=MISSING_DESTINATION, searched_at=now,
            )
            return BackhaulOutcome(status="error", error=MISSING_DESTINATION)

        target_states = list(prefs.preferred_destination_states)
        if not target_states:
            upsert_suggestion(self._conn, **base, status="no_preferences", searched_at=now)
            return BackhaulOutcome(status="no_preferences")

        upsert_suggestion(
            self._conn, **base, status="pending", target_states=target_states, searched_at=now,
        )

        try:
            creds = credentials or self._vault.load(user_id)
            candidates = await self._search(creds, saved_load, prefs, dest_city, dest_state, now)
        except (ApiError, CredentialsNotFoundError, DecryptionError) as e:
            logger.warning(
                "Backhaul search for load %s failed: %s", saved_load.provider_load_id, e,
            )
            if isinstance(e, ApiAuthError):
                self._vault.mark_invalid(user_id, str(e))
            upsert_suggestion(
                self._conn,
                **base,
                status="error",
                target_states=target_states,
                error=str(e),
                searched_at=now,
            )
            return BackhaulOutcome(status="error", error=str(e))

        ranked = rank_by_rpm(candidates)
        rates = [load.rate for load in ranked]
        rpms = [load.rpm for load in ranked]
        status = "completed" if ranked else "no_results"
        best_rate = max(rates) if rates else None
        best_rpm = max(rpms) if rpms else None

        upsert_suggestion(
            self._conn,
            **base,
            status=status,
            target_states=target_states,
            loads_found=len(ranked),
            best_rate=best_rate,
            best_rpm=best_rpm,
            avg_rate=sum(rates) / len(rates) if rates else None,
            avg_rpm=sum(rpms) / len(rpms) if rpms else None,
            top_loads=[summarize_load(load) for load in ranked[: self._config.max_suggested_loads]],
            searched_at=now,
            expires_at=now + timedelta(hours=self._config.suggestion_ttl_hours),
        )
        logger.info(
            "Found %d backhaul options for load %s", len(ranked), saved_load.provider_load_id,
        )
        return BackhaulOutcome(
            status=status,
            loads_found=len(ranked),
            best_rate=best_rate,
            best_rpm=best_rpm,
        )

    async def _search(
        self,
        credentials: SessionCredentials,
        saved_load: InterestedLoad,
        prefs: BackhaulPreferences,
        origin_city: str,
        origin_state: str,
        now: datetime,
    ) -> list[LoadRecord]:
        details = saved_load.details
        equipment = details.get("equipment")
        default_equipment = equipment[0] if isinstance(equipment, list) and equipment else None
        avoid = {s.upper() for s in prefs.avoid_states}
        pickup_date = backhaul_pickup_date(details, now)

        dedup = DeduplicationFilter()
        collected: list[LoadRecord] = []
        for state in prefs.preferred_destination_states:
            if state.upper() in avoid:
                continue
            criteria = SearchCriteria(
                owner_id=saved_load.owner_id,
                origin_city=origin_city,
                origin_state=origin_state,
                pickup_distance=prefs.preferred_pickup_distance,
                pickup_date=pickup_date,
                destination_state=state,
                max_weight=prefs.preferred_max_weight,
                equipment_type=prefs.preferred_equipment_type or default_equipment,
                is_backhaul=True,
            )
            loads = await self._client.fetch_loads(
                credentials.session_cookie.get_secret_value(),
                credentials.csrf_token.get_secret_value(),
                criteria,
                self._config.fetch_timeout_ms,
            )
            collected.extend(dedup(loads))

        return run_filter_chain(collected, [
            PickupAfterFilter(anchor_available_at(details)),
            AvoidStatesFilter(prefs.avoid_states),
            MaxDeadheadFilter(prefs.backhaul_max_deadhead),
            MinRpmFilter(prefs.backhaul_min_rpm),
        ])

    def _needs_scan(self, user_id: str, saved_load: InterestedLoad, now: datetime) -> bool:
        """True unless a live, settled suggestion already exists for the anchor."""
        existing = get_suggestion(self._conn, user_id, saved_load.provider_load_id)
        if existing is None or existing.status in ("error", "pending"):
            return True
        return existing.expires_at is not None and existing.expires_at < now

    async def scan_user(self, user_id: str) -> BackhaulScanResult:
        """Suggest backhauls for a user's recent flagged saved loads."""
        prefs = get_preferences(self._conn, user_id) or BackhaulPreferences()
        if not prefs.auto_suggest_backhauls:
            logger.info("Backhaul suggestions disabled for user %s", user_id)
            return BackhaulScanResult()

        now = utc_now()
        anchors = get_backhaul_anchor_loads(
            self._conn,
            user_id,
            since=now - timedelta(days=self._config.lookback_days),
            limit=self._config.max_saved_loads,
        )
        pending = [load for load in anchors if self._needs_scan(user_id, load, now)]
        result = BackhaulScanResult(total_loads_scanned=len(pending))
        if not pending:
            return result

        try:
            credentials = self._vault.load(user_id)
        except (CredentialsNotFoundError, DecryptionError) as e:
            return BackhaulScanResult(success=False, errors=[str(e)])

        for load in pending:
            outcome = await self.suggest_for_load(
                user_id, load, prefs, credentials=credentials,
            )
            if outcome.success:
                result.total_backhauls_found += outcome.loads_found
            elif outcome.error:
                result.errors.append(f"Load {load.provider_load_id}: {outcome.error}")

        logger.info(
            "Scanned %d saved loads for user %s, found %d backhaul options",
            result.total_loads_scanned, user_id, result.total_backhauls_found,
        )
        return result

    async def scan_all_users(self) -> BackhaulScanResult:
        user_ids = list_users_with_backhaul_requests(self._conn)
        semaphore = asyncio.Semaphore(self._settings.scan.max_concurrent_users)

        async def bounded(user_id: str) -> BackhaulScanResult:
            async with semaphore:
                try:
                    return await self.scan_user(user_id)
                except Exception as e:
                    logger.exception("Backhaul scan for user %s failed", user_id)
                    return BackhaulScanResult(success=False, errors=[str(e) or type(e).__name__])

        results = await asyncio.gather(*(bounded(u) for u in user_ids))

        summary = BackhaulScanResult()
        for user_id, result in zip(user_ids, results):
            summary.total_loads_scanned += result.total_loads_scanned
            summary.total_backhauls_found += result.total_backhauls_found
            summary.errors.extend(f"User {user_id}: {err}" for err in result.errors)
        return summary
