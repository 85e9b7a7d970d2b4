"""Query payload builder for the CloudTrucks async load search.

Pure functions, no I/O, so they are tested without a network.
"""

from typing import Any

from loadscout.core.schemas import SearchCriteria, utc_now

SESSION_COOKIE_NAME = "__Secure-sessionid-v2"
CSRF_COOKIE_NAME = "__Secure-csrftoken-v2"

DEFAULT_EQUIPMENT = "DRY_VAN"
DEFAULT_PICKUP_DISTANCE = 50
DEFAULT_MAX_WEIGHT = 45000
MIN_LOAD_AGE_MIN = 30

EQUIPMENT_MAP: dict[str, str] = {
    "Dry Van": "DRY_VAN",
    "DRY_VAN": "DRY_VAN",
    "Power Only": "POWER_ONLY",
    "POWER_ONLY": "POWER_ONLY",
}

TRIP_DISTANCES = ["Local", "Short", "Long"]


def normalize_booking_type(booking_type: str | None) -> str:
    """Map free-form booking filters onto ALL, INSTANT or STANDARD."""
    if not booking_type or booking_type.lower() in ("any", "all"):
        return "ALL"
    upper = booking_type.upper()
    if upper in ("INSTANT", "STANDARD"):
        return upper
    return "ALL"


def map_equipment(equipment_type: str | None) -> str:
    if not equipment_type:
        return DEFAULT_EQUIPMENT
    return EQUIPMENT_MAP.get(equipment_type, DEFAULT_EQUIPMENT)


def clean_cookie_value(value: str | None, name: str) -> str:
    """Strip a pasted ``name=`` prefix and surrounding whitespace."""
    if not value:
        return ""
    value = value.strip()
    prefix = f"{name}="
    if value.startswith(prefix):
        return value[len(prefix):]
    return value


def _location(city: str | None, state: str | None) -> str:
    if not city:
        return ""
    return f"{city}, {state}" if state else city


def build_query_payload(criteria: SearchCriteria) -> dict[str, Any]:
    """Translate a criterion into the provider's query body.

    Cities that already carry a state (``"San Jose, CA"``) are passed as-is
    when no separate state is set.
    """
    booking_type = normalize_booking_type(criteria.booking_type)
    payload: dict[str, Any] = {
        "origin_location": _location(criteria.origin_city, criteria.origin_state),
        "origin_range_mi__max": criteria.pickup_distance or DEFAULT_PICKUP_DISTANCE,
        "origin_pickup_date__min": criteria.pickup_date or utc_now().isoformat(),
        "dest_location": _location(criteria.dest_city, criteria.destination_state),
        "equipment": [map_equipment(criteria.equipment_type)],
        "sort_type": "BEST_PRICE",
        "booking_type": booking_type,
        "trip_distances": list(TRIP_DISTANCES),
        # Instant-book queries ask for unmasked addresses.
        "masked_data": booking_type != "INSTANT",
        "age_min__min": MIN_LOAD_AGE_MIN,
        "truck_weight_lb__max": criteria.max_weight or DEFAULT_MAX_WEIGHT,
        "requested_states": [criteria.destination_state] if criteria.destination_state else [],
        "is_offline_book_compatible": True,
    }
    if criteria.pickup_date_end:
        payload["origin_pickup_date__max"] = criteria.pickup_date_end
    return payload


def build_auth_headers(
    session_cookie: str, csrf_token: str, *, user_agent: str, origin: str,
) -> dict[str, str]:
    """Cookie and anti-forgery headers that impersonate the browser session."""
    session = clean_cookie_value(session_cookie, SESSION_COOKIE_NAME)
    csrf = clean_cookie_value(csrf_token, CSRF_COOKIE_NAME)
    return {
        "accept": "application/json, text/plain, */*",
        "cookie": f"{CSRF_COOKIE_NAME}={csrf}; {SESSION_COOKIE_NAME}={session}",
        "origin": origin,
        "user-agent": user_agent,
        "x-csrftoken": csrf,
    }
