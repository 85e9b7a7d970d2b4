"""Integration tests: backhaul suggestions anchored on saved loads."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from loadscout.core.config import Settings
from loadscout.core.db import (
    count_suggestions,
    get_credentials,
    get_suggestion,
    init_db,
    insert_interested_load,
    upsert_preferences,
    upsert_suggestion,
)
from loadscout.core.errors import ApiAuthError, ApiRequestError
from loadscout.core.schemas import (
    BackhaulPreferences,
    ConnectionCheck,
    InterestedLoad,
    LoadRecord,
    MarketInsights,
    SearchCriteria,
    utc_now,
)
from loadscout.pipeline.backhaul import (
    MISSING_DESTINATION,
    BackhaulSuggester,
    anchor_available_at,
    backhaul_pickup_date,
)
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.cipher import CredentialCipher
from loadscout.vault.credentials import CredentialVault


class StateClient(LoadBoardClient):
    """Answers each backhaul query from a callback keyed on destination state."""

    def __init__(self, respond: Callable[[SearchCriteria], list[LoadRecord]]) -> None:
        self._respond = respond
        self.calls: list[SearchCriteria] = []

    @property
    def provider_id(self) -> str:
        return "scripted"

    async def fetch_loads(
        self,
        session_cookie: str,
        csrf_token: str,
        criteria: SearchCriteria,
        timeout_ms: int,
    ) -> list[LoadRecord]:
        self.calls.append(criteria)
        return self._respond(criteria)

    async def test_connection(self, session_cookie: str, csrf_token: str) -> ConnectionCheck:
        return ConnectionCheck(success=True)

    async def fetch_market_insights(
        self,
        session_cookie: str,
        csrf_token: str,
        equipment_type: str = "DRY_VAN",
        distance_type: str = "Long",
    ) -> MarketInsights | None:
        return None


ANCHOR_DETAILS = {
    "origin_city": "San Jose",
    "origin_state": "CA",
    "dest_city": "Las Vegas",
    "dest_state": "NV",
    "delivery_date": "2026-03-03T12:00:00Z",
    "equipment": ["POWER_ONLY"],
}


def _load(load_id: str, **kw: object) -> LoadRecord:
    defaults: dict[str, object] = {
        "id": load_id,
        "rate": 1200.0,
        "distance_mi": 400.0,
        "dest_state": "CA",
        "deadhead_mi": 10.0,
        "pickup_date": "2026-03-04T08:00:00Z",
    }
    defaults.update(kw)
    return LoadRecord(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


@pytest.fixture()
def vault(db) -> CredentialVault:  # type: ignore[no-untyped-def]
    vault = CredentialVault(db, CredentialCipher(bytes(range(32))))
    vault.store("u1", "abc", "xyz")
    return vault


def _anchor(db, details: dict[str, object] | None = None, provider_id: str = "A-1") -> InterestedLoad:  # type: ignore[no-untyped-def]
    load_id = insert_interested_load(
        db, "u1", provider_id, dict(details if details is not None else ANCHOR_DETAILS),
        backhaul_requested=True,
    )
    return InterestedLoad(
        id=load_id,
        owner_id="u1",
        provider_load_id=provider_id,
        details=dict(details if details is not None else ANCHOR_DETAILS),
        backhaul_requested=True,
        created_at=utc_now(),
    )


PREFS = BackhaulPreferences(
    preferred_destination_states=["CA", "AZ", "OR"],
    avoid_states=["OR"],
    backhaul_max_deadhead=50,
    backhaul_min_rpm=2.0,
)


class TestHelpers:
    def test_pickup_date_from_delivery(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert backhaul_pickup_date(ANCHOR_DETAILS, now) == "2026-03-04"

    def test_pickup_date_from_anchor_pickup(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert backhaul_pickup_date({"pickup_date": "2026-03-02"}, now) == "2026-03-04"

    def test_pickup_date_defaults_to_tomorrow(self) -> None:
        now = datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc)
        assert backhaul_pickup_date({}, now) == "2026-03-02"

    def test_available_at(self) -> None:
        assert anchor_available_at(ANCHOR_DETAILS) == datetime(2026, 3, 3, 12, tzinfo=timezone.utc)
        assert anchor_available_at({}) is None


# ---------------------------------------------------------------------------
# suggest_for_load
# ---------------------------------------------------------------------------


class TestSuggestForLoad:
    async def test_completed_with_filters(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)

        def respond(c: SearchCriteria) -> list[LoadRecord]:
            if c.destination_state == "CA":
                return [
                    _load("best", rate=1400),
                    _load("ok", rate=1000),
                    _load("slow", rate=600),
                    _load("far", deadhead_mi=80),
                    _load("early", pickup_date="2026-03-03T06:00:00Z"),
                ]
            return [_load("best", rate=1400), _load("az", dest_state="AZ", rate=1200)]

        client = StateClient(respond)
        suggester = BackhaulSuggester(db, vault, client, Settings())

        outcome = await suggester.suggest_for_load("u1", anchor, PREFS)

        assert outcome.status == "completed"
        assert outcome.loads_found == 3
        assert outcome.best_rate == 1400
        assert [c.destination_state for c in client.calls] == ["CA", "AZ"]
        first = client.calls[0]
        assert (first.origin_city, first.origin_state) == ("Las Vegas", "NV")
        assert first.pickup_date == "2026-03-04"
        assert first.equipment_type == "POWER_ONLY"

        stored = get_suggestion(db, "u1", "A-1")
        assert stored is not None
        assert stored.status == "completed"
        assert [load["id"] for load in stored.top_loads] == ["best", "az", "ok"]
        assert stored.best_rpm == 3.5
        assert stored.expires_at is not None
        assert stored.last_searched_at is not None
        assert stored.expires_at - stored.last_searched_at == timedelta(hours=24)

    async def test_no_results(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)
        suggester = BackhaulSuggester(db, vault, StateClient(lambda c: []), Settings())

        outcome = await suggester.suggest_for_load("u1", anchor, PREFS)

        assert outcome.status == "no_results"
        assert outcome.success is True
        assert get_suggestion(db, "u1", "A-1").status == "no_results"

    async def test_no_preferences(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)
        client = StateClient(lambda c: [])

        outcome = await BackhaulSuggester(db, vault, client, Settings()).suggest_for_load(
            "u1", anchor, None,
        )

        assert outcome.status == "no_preferences"
        assert client.calls == []
        assert get_suggestion(db, "u1", "A-1").status == "no_preferences"

    async def test_missing_destination(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db, {"origin_city": "San Jose", "dest_city": "Las Vegas"})

        outcome = await BackhaulSuggester(
            db, vault, StateClient(lambda c: []), Settings(),
        ).suggest_for_load("u1", anchor, PREFS)

        assert outcome.status == "error"
        assert outcome.error == MISSING_DESTINATION
        assert get_suggestion(db, "u1", "A-1").error == MISSING_DESTINATION

    async def test_fetch_failure_is_error(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)

        def respond(c: SearchCriteria) -> list[LoadRecord]:
            if c.destination_state == "AZ":
                raise ApiRequestError("Provider returned HTTP 500", 500)
            return [_load("best")]

        outcome = await BackhaulSuggester(
            db, vault, StateClient(respond), Settings(),
        ).suggest_for_load("u1", anchor, PREFS)

        assert outcome.status == "error"
        stored = get_suggestion(db, "u1", "A-1")
        assert stored.status == "error"
        assert stored.top_loads == []

    async def test_auth_failure_marks_credentials(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)

        def respond(c: SearchCriteria) -> list[LoadRecord]:
            raise ApiAuthError("Session rejected by provider (HTTP 403)", 403)

        outcome = await BackhaulSuggester(
            db, vault, StateClient(respond), Settings(),
        ).suggest_for_load("u1", anchor, PREFS)

        assert outcome.status == "error"
        assert get_credentials(db, "u1")["is_valid"] == 0

    async def test_resuggest_replaces_row(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        anchor = _anchor(db)
        suggester = BackhaulSuggester(db, vault, StateClient(lambda c: [_load("x")]), Settings())

        await suggester.suggest_for_load("u1", anchor, PREFS)
        await suggester.suggest_for_load("u1", anchor, PREFS)

        assert count_suggestions(db) == 1


# ---------------------------------------------------------------------------
# scan_user / scan_all_users
# ---------------------------------------------------------------------------


class TestScanUser:
    async def test_skips_live_suggestions(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(db, "u1", PREFS)
        fresh = _anchor(db, provider_id="fresh")
        _anchor(db, provider_id="settled")
        upsert_suggestion(
            db,
            owner_id="u1",
            saved_load_id=fresh.id + 1,
            saved_load_provider_id="settled",
            origin_city="Las Vegas",
            origin_state="NV",
            status="completed",
            expires_at=utc_now() + timedelta(hours=12),
        )
        client = StateClient(lambda c: [_load("best")])

        result = await BackhaulSuggester(db, vault, client, Settings()).scan_user("u1")

        assert result.total_loads_scanned == 1
        assert result.total_backhauls_found == 1
        assert get_suggestion(db, "u1", "fresh").status == "completed"

    async def test_retries_error_rows(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(db, "u1", PREFS)
        anchor = _anchor(db)
        upsert_suggestion(
            db,
            owner_id="u1",
            saved_load_id=anchor.id,
            saved_load_provider_id="A-1",
            origin_city="Las Vegas",
            origin_state="NV",
            status="error",
            error="earlier failure",
        )

        result = await BackhaulSuggester(
            db, vault, StateClient(lambda c: [_load("best")]), Settings(),
        ).scan_user("u1")

        assert result.total_loads_scanned == 1
        assert get_suggestion(db, "u1", "A-1").status == "completed"

    async def test_disabled_by_preference(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(
            db, "u1", PREFS.model_copy(update={"auto_suggest_backhauls": False}),
        )
        _anchor(db)
        client = StateClient(lambda c: [_load("best")])

        result = await BackhaulSuggester(db, vault, client, Settings()).scan_user("u1")

        assert result.total_loads_scanned == 0
        assert client.calls == []

    async def test_old_anchors_ignored(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(db, "u1", PREFS)
        insert_interested_load(
            db, "u1", "old", dict(ANCHOR_DETAILS),
            backhaul_requested=True, created_at=utc_now() - timedelta(days=8),
        )

        result = await BackhaulSuggester(
            db, vault, StateClient(lambda c: []), Settings(),
        ).scan_user("u1")

        assert result.total_loads_scanned == 0

    async def test_errors_reported_per_load(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(db, "u1", PREFS)
        _anchor(db)

        def respond(c: SearchCriteria) -> list[LoadRecord]:
            raise ApiRequestError("Provider returned HTTP 503", 503)

        result = await BackhaulSuggester(
            db, vault, StateClient(respond), Settings(),
        ).scan_user("u1")

        assert result.errors == ["Load A-1: Provider returned HTTP 503"]

    async def test_scan_all_users(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        upsert_preferences(db, "u1", PREFS)
        _anchor(db)
        vault.store("u2", "def", "uvw")
        insert_interested_load(db, "u2", "B-1", dict(ANCHOR_DETAILS), backhaul_requested=True)

        result = await BackhaulSuggester(
            db, vault, StateClient(lambda c: [_load("best")]), Settings(),
        ).scan_all_users()

        assert result.total_loads_scanned == 2
        assert result.total_backhauls_found == 1
        assert get_suggestion(db, "u2", "B-1").status == "no_preferences"

    async def test_unexpected_error_isolated(self, db, vault) -> None:  # type: ignore[no-untyped-def]
        vault.store("u2", "def", "uvw")
        for user, provider_id in (("u1", "A-1"), ("u2", "B-1")):
            upsert_preferences(db, user, PREFS)
            insert_interested_load(db, user, provider_id, dict(ANCHOR_DETAILS), backhaul_requested=True)

        def respond(c: SearchCriteria) -> list[LoadRecord]:
            if c.owner_id == "u2":
                raise RuntimeError("database is locked")
            return [_load("best")]

        result = await BackhaulSuggester(
            db, vault, StateClient(respond), Settings(),
        ).scan_all_users()

        assert result.total_backhauls_found == 1
        assert result.errors == ["User u2: database is locked"]
        assert get_suggestion(db, "u1", "A-1").status == "completed"
