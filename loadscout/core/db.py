"""SQLite store for credentials, criteria, loads, suggestions and guest data.

Every function takes the connection explicitly so callers (and tests) decide
which database they talk to. Authenticated and guest rows live in separate,
mirrored tables; functions that serve both take ``guest=True``.
"""

import json
import secrets
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loadscout.core.schemas import (
    BackhaulPreferences,
    FoundLoad,
    InterestedLoad,
    LoadRecord,
    ScanScope,
    SearchCriteria,
    SuggestedBackhaul,
    utc_now,
)

_CREDENTIALS_TABLE = """
CREATE TABLE IF NOT EXISTS credentials (
    user_id                  TEXT PRIMARY KEY,
    encrypted_session_cookie TEXT NOT NULL,
    encrypted_csrf_token     TEXT,
    encrypted_email          TEXT,
    encrypted_password       TEXT,
    is_valid                 INTEGER NOT NULL DEFAULT 1,
    last_validated_at        TEXT,
    validation_error         TEXT,
    updated_at               TEXT NOT NULL
);
"""

_CRITERIA_COLUMNS = """
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id              TEXT    NOT NULL,
    origin_city           TEXT    NOT NULL,
    origin_state          TEXT,
    origin_states         TEXT    NOT NULL DEFAULT '[]',
    dest_city             TEXT,
    destination_state     TEXT,
    destination_states    TEXT    NOT NULL DEFAULT '[]',
    equipment_type        TEXT,
    pickup_distance       INTEGER NOT NULL DEFAULT 50,
    pickup_date           TEXT,
    pickup_date_end       TEXT,
    booking_type          TEXT    NOT NULL DEFAULT 'ALL',
    min_rate              REAL,
    min_rpm               REAL,
    max_weight            INTEGER,
    active                INTEGER NOT NULL DEFAULT 1,
    is_backhaul           INTEGER NOT NULL DEFAULT 0,
    deleted_at            TEXT,
    created_at            TEXT    NOT NULL,
    last_scanned_at       TEXT,
    scan_status           TEXT,
    scan_error            TEXT,
    last_scan_loads_found INTEGER NOT NULL DEFAULT 0
"""

_FOUND_COLUMNS = """
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    criteria_id      INTEGER NOT NULL{fk},
    provider_load_id TEXT    NOT NULL,
    details          TEXT    NOT NULL,
    status           TEXT    NOT NULL DEFAULT 'found',
    found_at         TEXT    NOT NULL,
    last_seen_at     TEXT    NOT NULL,
    scan_count       INTEGER NOT NULL DEFAULT 1,
    UNIQUE(criteria_id, provider_load_id)
"""

_INTERESTED_COLUMNS = """
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id           TEXT    NOT NULL,
    provider_load_id   TEXT    NOT NULL,
    details            TEXT    NOT NULL,
    status             TEXT    NOT NULL DEFAULT 'interested',
    backhaul_requested INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    last_checked_at    TEXT
"""

_TABLES = (
    _CREDENTIALS_TABLE,
    f"CREATE TABLE IF NOT EXISTS search_criteria ({_CRITERIA_COLUMNS});",
    f"CREATE TABLE IF NOT EXISTS found_loads ({_FOUND_COLUMNS.format(fk='')});",
    f"CREATE TABLE IF NOT EXISTS interested_loads ({_INTERESTED_COLUMNS});",
    """
    CREATE TABLE IF NOT EXISTS user_preferences (
        user_id                      TEXT PRIMARY KEY,
        preferred_destination_states TEXT    NOT NULL DEFAULT '[]',
        avoid_states                 TEXT    NOT NULL DEFAULT '[]',
        backhaul_max_deadhead        REAL    NOT NULL DEFAULT 100,
        backhaul_min_rpm             REAL    NOT NULL DEFAULT 2.0,
        preferred_max_weight         INTEGER NOT NULL DEFAULT 45000,
        preferred_equipment_type     TEXT,
        preferred_pickup_distance    INTEGER NOT NULL DEFAULT 50,
        auto_suggest_backhauls       INTEGER NOT NULL DEFAULT 1
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS suggested_backhauls (
        id                     INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id               TEXT    NOT NULL,
        saved_load_id          INTEGER NOT NULL,
        saved_load_provider_id TEXT    NOT NULL,
        origin_city            TEXT    NOT NULL,
        origin_state           TEXT    NOT NULL,
        target_states          TEXT    NOT NULL DEFAULT '[]',
        status                 TEXT    NOT NULL,
        loads_found            INTEGER NOT NULL DEFAULT 0,
        best_rate              REAL,
        best_rpm               REAL,
        avg_rate               REAL,
        avg_rpm                REAL,
        top_loads              TEXT    NOT NULL DEFAULT '[]',
        error                  TEXT,
        created_at             TEXT    NOT NULL,
        last_searched_at       TEXT,
        expires_at             TEXT,
        UNIQUE(owner_id, saved_load_provider_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS guest_sessions (
        token      TEXT PRIMARY KEY,
        created_at TEXT NOT NULL
    );
    """,
    f"CREATE TABLE IF NOT EXISTS guest_search_criteria ({_CRITERIA_COLUMNS});",
    "CREATE TABLE IF NOT EXISTS guest_found_loads ("
    + _FOUND_COLUMNS.format(fk=" REFERENCES guest_search_criteria(id) ON DELETE CASCADE")
    + ");",
    f"CREATE TABLE IF NOT EXISTS guest_interested_loads ({_INTERESTED_COLUMNS});",
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    for ddl in _TABLES:
        conn.execute(ddl)
    conn.commit()
    return conn


# --- Helpers ---


def _ts(value: datetime | None) -> str | None:
    """Serialize a timestamp as fixed-width UTC ISO text so string order is time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _tables(guest: bool) -> tuple[str, str, str]:
    if guest:
        return "guest_search_criteria", "guest_found_loads", "guest_interested_loads"
    return "search_criteria", "found_loads", "interested_loads"


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


# --- Credentials ---


def upsert_credentials(
    conn: sqlite3.Connection,
    user_id: str,
    encrypted_session_cookie: str,
    encrypted_csrf_token: str | None,
    encrypted_email: str | None = None,
    encrypted_password: str | None = None,
) -> None:
    """Insert or replace a user's ciphertext record and mark it valid."""
    now = _ts(utc_now())
    conn.execute(
        """
        INSERT INTO credentials
            (user_id, encrypted_session_cookie, encrypted_csrf_token,
             encrypted_email, encrypted_password, is_valid, last_validated_at,
             validation_error, updated_at)
        VALUES (?, ?, ?, ?, ?, 1, ?, NULL, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            encrypted_session_cookie = excluded.encrypted_session_cookie,
            encrypted_csrf_token = excluded.encrypted_csrf_token,
            encrypted_email = COALESCE(excluded.encrypted_email, encrypted_email),
            encrypted_password = COALESCE(excluded.encrypted_password, encrypted_password),
            is_valid = 1,
            last_validated_at = excluded.last_validated_at,
            validation_error = NULL,
            updated_at = excluded.updated_at
        """,
        (
            user_id,
            encrypted_session_cookie,
            encrypted_csrf_token,
            encrypted_email,
            encrypted_password,
            now,
            now,
        ),
    )
    conn.commit()


def get_credentials(conn: sqlite3.Connection, user_id: str) -> sqlite3.Row | None:
    return conn.execute(  # type: ignore[no-any-return]
        "SELECT * FROM credentials WHERE user_id = ?", (user_id,),
    ).fetchone()


def get_latest_valid_credentials(conn: sqlite3.Connection) -> sqlite3.Row | None:
    """Return the most recently validated credential still marked valid."""
    return conn.execute(  # type: ignore[no-any-return]
        """
        SELECT * FROM credentials
        WHERE is_valid = 1
        ORDER BY last_validated_at DESC
        LIMIT 1
        """,
    ).fetchone()


def list_credential_user_ids(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT user_id FROM credentials ORDER BY user_id").fetchall()
    return [row["user_id"] for row in rows]


def set_credentials_validity(
    conn: sqlite3.Connection,
    user_id: str,
    is_valid: bool,
    error: str | None = None,
) -> None:
    conn.execute(
        """
        UPDATE credentials
        SET is_valid = ?, validation_error = ?, last_validated_at = ?
        WHERE user_id = ?
        """,
        (int(is_valid), error, _ts(utc_now()), user_id),
    )
    conn.commit()


# --- Search criteria ---


def insert_criteria(
    conn: sqlite3.Connection,
    criteria: SearchCriteria,
    *,
    guest: bool = False,
    created_at: datetime | None = None,
) -> int:
    """Store a criterion and return its row ID."""
    table, _, _ = _tables(guest)
    cursor = conn.execute(
        f"""
        INSERT INTO {table}
            (owner_id, origin_city, origin_state, origin_states, dest_city,
             destination_state, destination_states, equipment_type,
             pickup_distance, pickup_date, pickup_date_end, booking_type,
             min_rate, min_rpm, max_weight, active, is_backhaul, created_at)
        VALUES ({_placeholders(18)})
        """,
        (
            criteria.owner_id,
            criteria.origin_city,
            criteria.origin_state,
            json.dumps(criteria.origin_states),
            criteria.dest_city,
            criteria.destination_state,
            json.dumps(criteria.destination_states),
            criteria.equipment_type,
            criteria.pickup_distance,
            criteria.pickup_date,
            criteria.pickup_date_end,
            criteria.booking_type,
            criteria.min_rate,
            criteria.min_rpm,
            criteria.max_weight,
            int(criteria.active),
            int(criteria.is_backhaul),
            _ts(created_at or utc_now()),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _criteria_from_row(row: sqlite3.Row) -> SearchCriteria:
    return SearchCriteria(
        id=row["id"],
        owner_id=row["owner_id"],
        origin_city=row["origin_city"],
        origin_state=row["origin_state"],
        origin_states=json.loads(row["origin_states"]),
        dest_city=row["dest_city"],
        destination_state=row["destination_state"],
        destination_states=json.loads(row["destination_states"]),
        equipment_type=row["equipment_type"],
        pickup_distance=row["pickup_distance"],
        pickup_date=row["pickup_date"],
        pickup_date_end=row["pickup_date_end"],
        booking_type=row["booking_type"],
        min_rate=row["min_rate"],
        min_rpm=row["min_rpm"],
        max_weight=row["max_weight"],
        active=bool(row["active"]),
        is_backhaul=bool(row["is_backhaul"]),
        last_scanned_at=_dt(row["last_scanned_at"]),
    )


def get_active_criteria(
    conn: sqlite3.Connection,
    owner_id: str,
    *,
    scope: ScanScope = "fronthaul",
    criteria_id: int | None = None,
    guest: bool = False,
    created_after: datetime | None = None,
    limit: int | None = None,
) -> list[SearchCriteria]:
    """Return an owner's active, non-deleted criteria for the given scope."""
    table, _, _ = _tables(guest)
    sql = f"SELECT * FROM {table} WHERE owner_id = ? AND active = 1 AND deleted_at IS NULL"
    params: list[Any] = [owner_id]
    if scope == "fronthaul":
        sql += " AND is_backhaul = 0"
    elif scope == "backhaul":
        sql += " AND is_backhaul = 1"
    if criteria_id is not None:
        sql += " AND id = ?"
        params.append(criteria_id)
    if created_after is not None:
        sql += " AND created_at >= ?"
        params.append(_ts(created_after))
    sql += " ORDER BY id"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_criteria_from_row(r) for r in conn.execute(sql, params).fetchall()]


def set_criteria_active(
    conn: sqlite3.Connection, criteria_id: int, active: bool, *, guest: bool = False,
) -> None:
    """Pause or resume a criterion. Criteria are deactivated, never hard-deleted."""
    table, _, _ = _tables(guest)
    conn.execute(f"UPDATE {table} SET active = ? WHERE id = ?", (int(active), criteria_id))
    conn.commit()


def update_criteria_scan_status(
    conn: sqlite3.Connection,
    criteria_id: int,
    status: str,
    *,
    loads_found: int = 0,
    error: str | None = None,
    scanned_at: datetime | None = None,
    guest: bool = False,
) -> None:
    table, _, _ = _tables(guest)
    if scanned_at is not None:
        conn.execute(
            f"""
            UPDATE {table}
            SET scan_status = ?, scan_error = ?, last_scan_loads_found = ?, last_scanned_at = ?
            WHERE id = ?
            """,
            (status, error, loads_found, _ts(scanned_at), criteria_id),
        )
    else:
        conn.execute(
            f"""
            UPDATE {table}
            SET scan_status = ?, scan_error = ?, last_scan_loads_found = ?
            WHERE id = ?
            """,
            (status, error, loads_found, criteria_id),
        )
    conn.commit()


def get_criteria_scan_status(
    conn: sqlite3.Connection, criteria_id: int, *, guest: bool = False,
) -> sqlite3.Row | None:
    table, _, _ = _tables(guest)
    return conn.execute(  # type: ignore[no-any-return]
        f"SELECT scan_status, scan_error, last_scan_loads_found, last_scanned_at "
        f"FROM {table} WHERE id = ?",
        (criteria_id,),
    ).fetchone()


def list_users_with_active_criteria(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        """
        SELECT DISTINCT owner_id FROM search_criteria
        WHERE active = 1 AND deleted_at IS NULL AND is_backhaul = 0
        ORDER BY owner_id
        """,
    ).fetchall()
    return [row["owner_id"] for row in rows]


# --- Found loads ---


def insert_found_load_if_absent(
    conn: sqlite3.Connection,
    criteria_id: int,
    load: LoadRecord,
    *,
    guest: bool = False,
    now: datetime | None = None,
) -> bool:
    """Insert a load for a criterion unless (criteria_id, provider id) exists.

    Returns True if a new row was inserted. An existing row only has its
    ``last_seen_at`` and ``scan_count`` refreshed, which also makes concurrent
    duplicate inserts a no-op.
    """
    _, table, _ = _tables(guest)
    seen_at = _ts(now or utc_now())
    cursor = conn.execute(
        f"""
        INSERT INTO {table}
            (criteria_id, provider_load_id, details, status, found_at, last_seen_at)
        VALUES (?, ?, ?, 'found', ?, ?)
        ON CONFLICT(criteria_id, provider_load_id) DO NOTHING
        """,
        (criteria_id, load.id, load.model_dump_json(), seen_at, seen_at),
    )
    inserted = cursor.rowcount == 1
    if not inserted:
        conn.execute(
            f"""
            UPDATE {table}
            SET last_seen_at = ?, scan_count = scan_count + 1
            WHERE criteria_id = ? AND provider_load_id = ?
            """,
            (seen_at, criteria_id, load.id),
        )
    conn.commit()
    return inserted


def _found_from_row(row: sqlite3.Row) -> FoundLoad:
    return FoundLoad(
        id=row["id"],
        criteria_id=row["criteria_id"],
        provider_load_id=row["provider_load_id"],
        details=json.loads(row["details"]),
        status=row["status"],
        found_at=_dt(row["found_at"]),  # type: ignore[arg-type]
        last_seen_at=_dt(row["last_seen_at"]),  # type: ignore[arg-type]
        scan_count=row["scan_count"],
    )


def get_found_loads(
    conn: sqlite3.Connection, criteria_id: int, *, guest: bool = False,
) -> list[FoundLoad]:
    _, table, _ = _tables(guest)
    rows = conn.execute(
        f"SELECT * FROM {table} WHERE criteria_id = ? ORDER BY id", (criteria_id,),
    ).fetchall()
    return [_found_from_row(r) for r in rows]


def delete_found_load(conn: sqlite3.Connection, load_id: int) -> None:
    conn.execute("DELETE FROM found_loads WHERE id = ?", (load_id,))
    conn.commit()


# --- Interested (saved) loads ---


def insert_interested_load(
    conn: sqlite3.Connection,
    owner_id: str,
    provider_load_id: str,
    details: dict[str, Any],
    *,
    backhaul_requested: bool = False,
    created_at: datetime | None = None,
    guest: bool = False,
) -> int:
    _, _, table = _tables(guest)
    cursor = conn.execute(
        f"""
        INSERT INTO {table}
            (owner_id, provider_load_id, details, status, backhaul_requested, created_at)
        VALUES (?, ?, ?, 'interested', ?, ?)
        """,
        (
            owner_id,
            provider_load_id,
            json.dumps(details),
            int(backhaul_requested),
            _ts(created_at or utc_now()),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _interested_from_row(row: sqlite3.Row) -> InterestedLoad:
    return InterestedLoad(
        id=row["id"],
        owner_id=row["owner_id"],
        provider_load_id=row["provider_load_id"],
        details=json.loads(row["details"]),
        status=row["status"],
        backhaul_requested=bool(row["backhaul_requested"]),
        created_at=_dt(row["created_at"]),  # type: ignore[arg-type]
        last_checked_at=_dt(row["last_checked_at"]),
    )


def get_interested_loads(conn: sqlite3.Connection, owner_id: str) -> list[InterestedLoad]:
    rows = conn.execute(
        "SELECT * FROM interested_loads WHERE owner_id = ? ORDER BY id", (owner_id,),
    ).fetchall()
    return [_interested_from_row(r) for r in rows]


def get_backhaul_anchor_loads(
    conn: sqlite3.Connection,
    owner_id: str,
    since: datetime,
    limit: int,
) -> list[InterestedLoad]:
    """Return recent saved loads flagged for backhaul search, newest first."""
    rows = conn.execute(
        """
        SELECT * FROM interested_loads
        WHERE owner_id = ?
          AND backhaul_requested = 1
          AND status IN ('interested', 'available')
          AND created_at >= ?
        ORDER BY created_at DESC
        LIMIT ?
        """,
        (owner_id, _ts(since), limit),
    ).fetchall()
    return [_interested_from_row(r) for r in rows]


def list_users_with_backhaul_requests(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        """
        SELECT DISTINCT owner_id FROM interested_loads
        WHERE backhaul_requested = 1 AND status IN ('interested', 'available')
        ORDER BY owner_id
        """,
    ).fetchall()
    return [row["owner_id"] for row in rows]


def update_interested_status(
    conn: sqlite3.Connection,
    load_id: int,
    status: str,
    checked_at: datetime,
) -> None:
    conn.execute(
        "UPDATE interested_loads SET status = ?, last_checked_at = ? WHERE id = ?",
        (status, _ts(checked_at), load_id),
    )
    conn.commit()


def delete_interested_load(conn: sqlite3.Connection, load_id: int) -> None:
    conn.execute("DELETE FROM interested_loads WHERE id = ?", (load_id,))
    conn.commit()


def existing_interested_ids(conn: sqlite3.Connection, ids: Iterable[int]) -> set[int]:
    ids = list(ids)
    if not ids:
        return set()
    rows = conn.execute(
        f"SELECT id FROM interested_loads WHERE id IN ({_placeholders(len(ids))})", ids,
    ).fetchall()
    return {row["id"] for row in rows}


# --- Preferences ---


def upsert_preferences(
    conn: sqlite3.Connection, user_id: str, prefs: BackhaulPreferences,
) -> None:
    conn.execute(
        """
        INSERT INTO user_preferences
            (user_id, preferred_destination_states, avoid_states, backhaul_max_deadhead,
             backhaul_min_rpm, preferred_max_weight, preferred_equipment_type,
             preferred_pickup_distance, auto_suggest_backhauls)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            preferred_destination_states = excluded.preferred_destination_states,
            avoid_states = excluded.avoid_states,
            backhaul_max_deadhead = excluded.backhaul_max_deadhead,
            backhaul_min_rpm = excluded.backhaul_min_rpm,
            preferred_max_weight = excluded.preferred_max_weight,
            preferred_equipment_type = excluded.preferred_equipment_type,
            preferred_pickup_distance = excluded.preferred_pickup_distance,
            auto_suggest_backhauls = excluded.auto_suggest_backhauls
        """,
        (
            user_id,
            json.dumps(prefs.preferred_destination_states),
            json.dumps(prefs.avoid_states),
            prefs.backhaul_max_deadhead,
            prefs.backhaul_min_rpm,
            prefs.preferred_max_weight,
            prefs.preferred_equipment_type,
            prefs.preferred_pickup_distance,
            int(prefs.auto_suggest_backhauls),
        ),
    )
    conn.commit()


def get_preferences(conn: sqlite3.Connection, user_id: str) -> BackhaulPreferences | None:
    row = conn.execute(
        "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,),
    ).fetchone()
    if row is None:
        return None
    return BackhaulPreferences(
        preferred_destination_states=json.loads(row["preferred_destination_states"]),
        avoid_states=json.loads(row["avoid_states"]),
        backhaul_max_deadhead=row["backhaul_max_deadhead"],
        backhaul_min_rpm=row["backhaul_min_rpm"],
        preferred_max_weight=row["preferred_max_weight"],
        preferred_equipment_type=row["preferred_equipment_type"],
        preferred_pickup_distance=row["preferred_pickup_distance"],
        auto_suggest_backhauls=bool(row["auto_suggest_backhauls"]),
    )


# --- Suggested backhauls ---


def upsert_suggestion(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    saved_load_id: int,
    saved_load_provider_id: str,
    origin_city: str,
    origin_state: str,
    status: str,
    target_states: list[str] | None = None,
    loads_found: int = 0,
    best_rate: float | None = None,
    best_rpm: float | None = None,
    avg_rate: float | None = None,
    avg_rpm: float | None = None,
    top_loads: list[dict[str, Any]] | None = None,
    error: str | None = None,
    searched_at: datetime | None = None,
    expires_at: datetime | None = None,
) -> None:
    """Create or replace the suggestion for (owner, anchor provider id)."""
    now = _ts(searched_at or utc_now())
    conn.execute(
        """
        INSERT INTO suggested_backhauls
            (owner_id, saved_load_id, saved_load_provider_id, origin_city, origin_state,
             target_states, status, loads_found, best_rate, best_rpm, avg_rate, avg_rpm,
             top_loads, error, created_at, last_searched_at, expires_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(owner_id, saved_load_provider_id) DO UPDATE SET
            saved_load_id = excluded.saved_load_id,
            origin_city = excluded.origin_city,
            origin_state = excluded.origin_state,
            target_states = excluded.target_states,
            status = excluded.status,
            loads_found = excluded.loads_found,
            best_rate = excluded.best_rate,
            best_rpm = excluded.best_rpm,
            avg_rate = excluded.avg_rate,
            avg_rpm = excluded.avg_rpm,
            top_loads = excluded.top_loads,
            error = excluded.error,
            last_searched_at = excluded.last_searched_at,
            expires_at = excluded.expires_at
        """,
        (
            owner_id,
            saved_load_id,
            saved_load_provider_id,
            origin_city,
            origin_state,
            json.dumps(target_states or []),
            status,
            loads_found,
            best_rate,
            best_rpm,
            avg_rate,
            avg_rpm,
            json.dumps(top_loads or []),
            error,
            now,
            now,
            _ts(expires_at),
        ),
    )
    conn.commit()


def _suggestion_from_row(row: sqlite3.Row) -> SuggestedBackhaul:
    return SuggestedBackhaul(
        id=row["id"],
        owner_id=row["owner_id"],
        saved_load_id=row["saved_load_id"],
        saved_load_provider_id=row["saved_load_provider_id"],
        origin_city=row["origin_city"],
        origin_state=row["origin_state"],
        target_states=json.loads(row["target_states"]),
        status=row["status"],
        loads_found=row["loads_found"],
        best_rate=row["best_rate"],
        best_rpm=row["best_rpm"],
        avg_rate=row["avg_rate"],
        avg_rpm=row["avg_rpm"],
        top_loads=json.loads(row["top_loads"]),
        error=row["error"],
        created_at=_dt(row["created_at"]),  # type: ignore[arg-type]
        last_searched_at=_dt(row["last_searched_at"]),
        expires_at=_dt(row["expires_at"]),
    )


def get_suggestions(conn: sqlite3.Connection, owner_id: str) -> list[SuggestedBackhaul]:
    rows = conn.execute(
        "SELECT * FROM suggested_backhauls WHERE owner_id = ? ORDER BY id", (owner_id,),
    ).fetchall()
    return [_suggestion_from_row(r) for r in rows]


def get_suggestion(
    conn: sqlite3.Connection, owner_id: str, saved_load_provider_id: str,
) -> SuggestedBackhaul | None:
    row = conn.execute(
        """
        SELECT * FROM suggested_backhauls
        WHERE owner_id = ? AND saved_load_provider_id = ?
        """,
        (owner_id, saved_load_provider_id),
    ).fetchone()
    return _suggestion_from_row(row) if row is not None else None


def count_suggestions(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM suggested_backhauls").fetchone()[0]  # type: ignore[no-any-return]


def delete_suggestions_expired_before(conn: sqlite3.Connection, now: datetime) -> int:
    cursor = conn.execute(
        "DELETE FROM suggested_backhauls WHERE expires_at IS NOT NULL AND expires_at < ?",
        (_ts(now),),
    )
    conn.commit()
    return cursor.rowcount


def delete_suggestions_with_status_before(
    conn: sqlite3.Connection, statuses: Iterable[str], cutoff: datetime,
) -> int:
    statuses = list(statuses)
    cursor = conn.execute(
        f"""
        DELETE FROM suggested_backhauls
        WHERE status IN ({_placeholders(len(statuses))}) AND created_at < ?
        """,
        [*statuses, _ts(cutoff)],
    )
    conn.commit()
    return cursor.rowcount


def list_suggestion_anchors(conn: sqlite3.Connection) -> list[tuple[int, int]]:
    """Return (suggestion id, saved_load_id) for every suggestion."""
    rows = conn.execute("SELECT id, saved_load_id FROM suggested_backhauls").fetchall()
    return [(row["id"], row["saved_load_id"]) for row in rows]


def delete_suggestions(conn: sqlite3.Connection, ids: Iterable[int]) -> int:
    ids = list(ids)
    if not ids:
        return 0
    cursor = conn.execute(
        f"DELETE FROM suggested_backhauls WHERE id IN ({_placeholders(len(ids))})", ids,
    )
    conn.commit()
    return cursor.rowcount


# --- Guest sessions ---


def create_guest_session(
    conn: sqlite3.Connection,
    token: str | None = None,
    created_at: datetime | None = None,
) -> str:
    token = token or secrets.token_urlsafe(24)
    conn.execute(
        "INSERT INTO guest_sessions (token, created_at) VALUES (?, ?)",
        (token, _ts(created_at or utc_now())),
    )
    conn.commit()
    return token


def guest_session_exists(conn: sqlite3.Connection, token: str) -> bool:
    row = conn.execute("SELECT 1 FROM guest_sessions WHERE token = ?", (token,)).fetchone()
    return row is not None


def delete_guest_data_before(conn: sqlite3.Connection, cutoff: datetime) -> tuple[int, int, int]:
    """Delete guest rows created before the cutoff.

    Guest found loads go with their criteria through the foreign-key cascade.
    Returns (sessions, criteria, interested loads) deleted.
    """
    ts = _ts(cutoff)
    criteria = conn.execute(
        "DELETE FROM guest_search_criteria WHERE created_at < ?", (ts,),
    ).rowcount
    interested = conn.execute(
        "DELETE FROM guest_interested_loads WHERE created_at < ?", (ts,),
    ).rowcount
    sessions = conn.execute(
        "DELETE FROM guest_sessions WHERE created_at < ?", (ts,),
    ).rowcount
    conn.commit()
    return sessions, criteria, interested
