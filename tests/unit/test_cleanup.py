"""Tests for retention cleanup passes."""

from datetime import datetime, timedelta, timezone

import pytest

from loadscout.core.config import Settings
from loadscout.core.db import (
    count_suggestions,
    create_guest_session,
    delete_interested_load,
    get_suggestion,
    init_db,
    insert_criteria,
    insert_interested_load,
    upsert_suggestion,
)
from loadscout.core.schemas import SearchCriteria
from loadscout.pipeline.cleanup import RetentionCleanup

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


@pytest.fixture()
def cleanup(db) -> RetentionCleanup:  # type: ignore[no-untyped-def]
    return RetentionCleanup(db, Settings())


def _suggest(db, provider_id: str, saved_load_id: int, status: str = "completed", **kw: object) -> None:  # type: ignore[no-untyped-def]
    upsert_suggestion(
        db,
        owner_id="u1",
        saved_load_id=saved_load_id,
        saved_load_provider_id=provider_id,
        origin_city="Reno",
        origin_state="NV",
        status=status,
        **kw,  # type: ignore[arg-type]
    )


class TestPurgeExpired:
    def test_one_second_either_side(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        saved = insert_interested_load(db, "u1", "L1", {})
        _suggest(db, "past", saved, expires_at=NOW - timedelta(seconds=1), searched_at=NOW)
        _suggest(db, "future", saved, expires_at=NOW + timedelta(seconds=1), searched_at=NOW)

        assert cleanup.purge_expired(NOW) == 1
        assert get_suggestion(db, "u1", "past") is None
        assert get_suggestion(db, "u1", "future") is not None

    def test_no_expiry_kept(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        saved = insert_interested_load(db, "u1", "L1", {})
        _suggest(db, "pending", saved, status="pending", searched_at=NOW)
        assert cleanup.purge_expired(NOW) == 0


class TestPurgeFailed:
    def test_old_failures_removed(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        saved = insert_interested_load(db, "u1", "L1", {})
        old = NOW - timedelta(days=8)
        _suggest(db, "old-error", saved, status="error", searched_at=old)
        _suggest(db, "old-none", saved, status="no_results", searched_at=old)
        _suggest(db, "old-prefs", saved, status="no_preferences", searched_at=old)
        _suggest(db, "old-ok", saved, status="completed", searched_at=old)
        _suggest(db, "new-error", saved, status="error", searched_at=NOW - timedelta(days=6))

        assert cleanup.purge_failed(NOW) == 3
        assert get_suggestion(db, "u1", "old-ok") is not None
        assert get_suggestion(db, "u1", "new-error") is not None


class TestPurgeOrphaned:
    def test_removes_suggestions_without_anchor(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        kept = insert_interested_load(db, "u1", "L1", {})
        gone = insert_interested_load(db, "u1", "L2", {})
        _suggest(db, "L1", kept)
        _suggest(db, "L2", gone)
        delete_interested_load(db, gone)

        assert cleanup.purge_orphaned() == 1
        assert get_suggestion(db, "u1", "L1") is not None

    def test_empty(self, cleanup: RetentionCleanup) -> None:
        assert cleanup.purge_orphaned() == 0


class TestRun:
    def test_idempotent(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        saved = insert_interested_load(db, "u1", "L1", {})
        _suggest(db, "expired", saved, expires_at=NOW - timedelta(hours=1), searched_at=NOW)
        _suggest(db, "orphan", 999, searched_at=NOW)

        first = cleanup.run(NOW)
        second = cleanup.run(NOW)

        assert first.total == 2
        assert second.total == 0
        assert count_suggestions(db) == 0


class TestGuestCleanup:
    def test_cutoff_and_counts(self, db, cleanup: RetentionCleanup) -> None:  # type: ignore[no-untyped-def]
        old = NOW - timedelta(days=5)
        token = create_guest_session(db, created_at=old)
        insert_criteria(
            db, SearchCriteria(owner_id=token, origin_city="Reno"), guest=True, created_at=old,
        )
        create_guest_session(db, created_at=NOW)

        result = cleanup.purge_guest_data(NOW)

        assert result.cutoff == NOW - timedelta(days=4)
        assert result.guest_sessions == 1
        assert result.guest_search_criteria == 1
        assert result.guest_interested_loads == 0
