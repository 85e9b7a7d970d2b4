"""Core data models for the load scanner."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

FoundLoadStatus = Literal["found", "booked", "expired"]
InterestedStatus = Literal["interested", "available", "expired", "unknown"]
AvailabilityStatus = Literal["available", "expired", "unknown"]
BackhaulStatus = Literal["pending", "completed", "no_results", "no_preferences", "error"]
ScanScope = Literal["all", "fronthaul", "backhaul"]

# Terminal statuses that retention cleanup ages out after a fixed window.
FAILED_BACKHAUL_STATUSES: tuple[str, ...] = ("no_results", "error", "no_preferences")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_when(value: Any) -> datetime | None:
    """Parse a provider date or timestamp; naive values are taken as UTC.

    Returns None for empty or unparseable input.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SearchCriteria(BaseModel):
    """A saved search filter owned by a user or a guest session."""

    id: int | None = None
    owner_id: str = ""
    origin_city: str
    origin_state: str | None = None
    origin_states: list[str] = Field(default_factory=list)
    dest_city: str | None = None
    destination_state: str | None = None
    destination_states: list[str] = Field(default_factory=list)
    equipment_type: str | None = None
    pickup_distance: int = Field(default=50, ge=1, le=500)
    pickup_date: str | None = None
    pickup_date_end: str | None = None
    booking_type: str = "ALL"
    min_rate: float | None = Field(default=None, ge=0)
    min_rpm: float | None = Field(default=None, ge=0)
    max_weight: int | None = Field(default=None, ge=0)
    active: bool = True
    is_backhaul: bool = False
    last_scanned_at: datetime | None = None

    @field_validator("equipment_type", mode="before")
    @classmethod
    def first_equipment(cls, v: Any) -> Any:
        """Accept a list of equipment codes and keep the first one."""
        if isinstance(v, (list, tuple)):
            return v[0] if v else None
        return v

    def state_pairs(self) -> list[tuple[str | None, str | None]]:
        """Expand multi-state selections into (origin_state, dest_state) pairs."""
        origins: list[str | None] = list(self.origin_states) or [self.origin_state]
        dests: list[str | None] = list(self.destination_states) or [self.destination_state]
        return [(o, d) for o in origins for d in dests]

    def for_states(self, origin_state: str | None, dest_state: str | None) -> "SearchCriteria":
        return self.model_copy(
            update={
                "origin_state": origin_state,
                "destination_state": dest_state,
                "origin_states": [],
                "destination_states": [],
            },
        )


class LoadRecord(BaseModel):
    """A load normalized from the provider's payload.

    Frozen. Every optional field has a default so that payload drift never
    causes a parse failure.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    origin_city: str = ""
    origin_state: str = ""
    origin_address: str = ""
    dest_city: str = ""
    dest_state: str = ""
    dest_address: str = ""
    rate: float = 0.0
    estimated_rate_min: float = 0.0
    estimated_rate_max: float = 0.0
    distance_mi: float = 0.0
    equipment: list[str] = Field(default_factory=list)
    broker_name: str = ""
    broker_mc_number: str = ""
    pickup_date: str = ""
    delivery_date: str = ""
    instant_book: bool = False
    weight_lb: int = 0
    deadhead_mi: float = 0.0
    is_team_load: bool = False

    @property
    def rpm(self) -> float:
        """Rate per mile, 0.0 when the distance is unknown."""
        if self.distance_mi <= 0:
            return 0.0
        return self.rate / self.distance_mi


class FoundLoad(BaseModel):
    """A scan result tied to one criterion."""

    id: int
    criteria_id: int
    provider_load_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    status: FoundLoadStatus = "found"
    found_at: datetime
    last_seen_at: datetime
    scan_count: int = 1


class InterestedLoad(BaseModel):
    """A user's explicit save of a load, tracked independently for availability."""

    id: int
    owner_id: str
    provider_load_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    status: InterestedStatus = "interested"
    backhaul_requested: bool = False
    created_at: datetime
    last_checked_at: datetime | None = None

    @property
    def origin_city(self) -> str:
        return str(self.details.get("origin_city") or "Unknown")


class BackhaulPreferences(BaseModel):
    """Per-user preferences that drive backhaul suggestions."""

    preferred_destination_states: list[str] = Field(default_factory=list)
    avoid_states: list[str] = Field(default_factory=list)
    backhaul_max_deadhead: float = Field(default=100.0, ge=0)
    backhaul_min_rpm: float = Field(default=2.0, ge=0)
    preferred_max_weight: int = 45000
    preferred_equipment_type: str | None = None
    preferred_pickup_distance: int = 50
    auto_suggest_backhauls: bool = True


class SuggestedBackhaul(BaseModel):
    """Derived backhaul search result anchored on a saved load."""

    id: int
    owner_id: str
    saved_load_id: int
    saved_load_provider_id: str
    origin_city: str
    origin_state: str
    target_states: list[str] = Field(default_factory=list)
    status: BackhaulStatus
    loads_found: int = 0
    best_rate: float | None = None
    best_rpm: float | None = None
    avg_rate: float | None = None
    avg_rpm: float | None = None
    top_loads: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime
    last_searched_at: datetime | None = None
    expires_at: datetime | None = None


class SessionCredentials(BaseModel):
    """Decrypted provider session. Secrets stay wrapped until the request is built."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_cookie: SecretStr
    csrf_token: SecretStr
    email: SecretStr | None = None


# --- Operation results ---


class ScanResult(BaseModel):
    success: bool
    loads_found: int = 0
    error: str | None = None


class ScanAllResult(BaseModel):
    total_scanned: int = 0
    total_loads_found: int = 0
    errors: list[str] = Field(default_factory=list)


class AvailabilityResult(BaseModel):
    id: int
    status: AvailabilityStatus


class BackhaulOutcome(BaseModel):
    status: BackhaulStatus
    loads_found: int = 0
    best_rate: float | None = None
    best_rpm: float | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "error"


class BackhaulScanResult(BaseModel):
    success: bool = True
    total_loads_scanned: int = 0
    total_backhauls_found: int = 0
    errors: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    expired: int = 0
    failed: int = 0
    orphaned: int = 0

    @property
    def total(self) -> int:
        return self.expired + self.failed + self.orphaned


class GuestCleanupResult(BaseModel):
    cutoff: datetime
    guest_sessions: int = 0
    guest_search_criteria: int = 0
    guest_interested_loads: int = 0


class ConnectionCheck(BaseModel):
    success: bool
    error: str | None = None


class CredentialHealthResult(BaseModel):
    valid_count: int = 0
    expired_count: int = 0
    errors: list[str] = Field(default_factory=list)


class MarketRegion(BaseModel):
    region_id: str
    region_name: str
    state: str | None = None
    load_count: int = 0
    avg_rate_per_mile: float = 0.0
    avg_rate: float = 0.0
    demand_level: Literal["low", "medium", "high", "very_high"] = "medium"
    trend: Literal["up", "down", "stable"] = "stable"
    trend_percent: float = 0.0


class MarketInsights(BaseModel):
    equipment_type: str
    distance_type: str
    last_updated: str
    regions: list[MarketRegion] = Field(default_factory=list)
    national_avg_rpm: float = 0.0
    total_loads: int = 0


class BookingResult(BaseModel):
    status: Literal["not_implemented", "dry_run", "booked", "failed"]
    load_id: str
    detail: str = ""
