"""CloudTrucks payload parser: converts raw provider dicts into LoadRecord objects.

Design rules:
  - The provider's field names drift between releases and endpoints. Every
    field is read through a fallback tuple of candidate keys.
  - Missing optional fields get a default ("" / 0 / False), never an error.
  - A payload without a load id is skipped, because the id is the dedup key.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loadscout.core.schemas import LoadRecord, MarketInsights, MarketRegion, utc_now

logger = logging.getLogger(__name__)

ID_KEYS = ("id", "load_id", "uuid")
ORIGIN_CITY_KEYS = ("origin_city", "pickup_city")
ORIGIN_STATE_KEYS = ("origin_state", "pickup_state")
ORIGIN_ADDRESS_KEYS = ("origin_address", "pickup_address")
DEST_CITY_KEYS = ("dest_city", "destination_city", "delivery_city")
DEST_STATE_KEYS = ("dest_state", "destination_state", "delivery_state")
DEST_ADDRESS_KEYS = ("dest_address", "destination_address", "delivery_address")
RATE_KEYS = ("trip_rate", "rate", "estimated_rate", "price")
RATE_MIN_KEYS = ("estimated_rate_min",)
RATE_MAX_KEYS = ("estimated_rate_max",)
DISTANCE_KEYS = ("trip_distance_mi", "distance_mi", "distance", "miles")
EQUIPMENT_KEYS = ("equipment", "equipment_type", "equipment_types")
BROKER_KEYS = ("broker_name", "broker", "company_name")
BROKER_MC_KEYS = ("broker_mc_number", "mc_number")
PICKUP_KEYS = ("origin_pickup_date", "pickup_date", "pickup_at")
DELIVERY_KEYS = ("dest_delivery_date", "delivery_date", "delivery_at")
INSTANT_KEYS = ("instant_book", "is_instant_book", "instant")
WEIGHT_KEYS = ("truck_weight_lb", "weight_lb", "weight")
DEADHEAD_KEYS = ("total_deadhead_mi", "origin_deadhead_mi", "deadhead_mi", "deadhead")
TEAM_KEYS = ("is_team_load", "team_load")

INLINE_RESULT_KEYS = ("loads", "results", "data")

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    """Return the first non-empty value among candidate keys."""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _to_float(value: Any) -> float:
    """Parse numbers the provider sends as numbers or strings like "$1,250.00"."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(str(value).replace(",", ""))
    return float(match.group()) if match else 0.0


def _to_int(value: Any) -> int:
    return int(_to_float(value))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _to_equipment(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return []


def _stop(raw: dict[str, Any], index: int) -> dict[str, Any]:
    stops = raw.get("stops")
    if isinstance(stops, list) and stops and isinstance(stops[index], dict):
        return stops[index]
    return {}


def normalize_load(raw: dict[str, Any]) -> LoadRecord | None:
    """Normalize one provider load. Returns None when the id is missing."""
    load_id = _first(raw, ID_KEYS)
    if load_id is None:
        logger.debug("Load payload missing id, skipping")
        return None

    first_stop = _stop(raw, 0)
    last_stop = _stop(raw, -1)

    return LoadRecord(
        id=_to_str(load_id),
        origin_city=_to_str(_first(raw, ORIGIN_CITY_KEYS) or first_stop.get("city")),
        origin_state=_to_str(_first(raw, ORIGIN_STATE_KEYS) or first_stop.get("state")),
        origin_address=_to_str(_first(raw, ORIGIN_ADDRESS_KEYS)),
        dest_city=_to_str(_first(raw, DEST_CITY_KEYS) or last_stop.get("city")),
        dest_state=_to_str(_first(raw, DEST_STATE_KEYS) or last_stop.get("state")),
        dest_address=_to_str(_first(raw, DEST_ADDRESS_KEYS)),
        rate=_to_float(_first(raw, RATE_KEYS)),
        estimated_rate_min=_to_float(_first(raw, RATE_MIN_KEYS)),
        estimated_rate_max=_to_float(_first(raw, RATE_MAX_KEYS)),
        distance_mi=_to_float(_first(raw, DISTANCE_KEYS)),
        equipment=_to_equipment(_first(raw, EQUIPMENT_KEYS)),
        broker_name=_to_str(_first(raw, BROKER_KEYS)),
        broker_mc_number=_to_str(_first(raw, BROKER_MC_KEYS)),
        pickup_date=_to_str(_first(raw, PICKUP_KEYS) or first_stop.get("date_start")),
        delivery_date=_to_str(_first(raw, DELIVERY_KEYS) or last_stop.get("date_end")),
        instant_book=_to_bool(_first(raw, INSTANT_KEYS)),
        weight_lb=_to_int(_first(raw, WEIGHT_KEYS)),
        deadhead_mi=_to_float(_first(raw, DEADHEAD_KEYS)),
        is_team_load=_to_bool(_first(raw, TEAM_KEYS)),
    )


def parse_loads(data: Any) -> list[LoadRecord]:
    """Parse a provider message into loads, skipping any that fail.

    Accepts a JSON string, a single load dict, a list of loads, or a wrapper
    dict holding the list under one of the inline result keys.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Discarding non-JSON load message")
            return []

    items: list[Any]
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        inline = extract_inline_loads(data)
        items = inline if inline is not None else [data]
    else:
        return []

    results: list[LoadRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            record = normalize_load(item)
        except (PydanticValidationError, TypeError, ValueError):
            logger.debug("Failed to parse load, skipping", exc_info=True)
            continue
        if record is not None:
            results.append(record)
    return results


def extract_inline_loads(body: dict[str, Any]) -> list[Any] | None:
    """Return a list of raw loads embedded directly in a response, if any."""
    for key in INLINE_RESULT_KEYS:
        value = body.get(key)
        if isinstance(value, list):
            return value
    return None


# --- Market insights ---


def normalize_demand_level(value: Any) -> str:
    if isinstance(value, str):
        lower = value.lower()
        if "very" in lower or "hot" in lower:
            return "very_high"
        if "high" in lower:
            return "high"
        if "low" in lower:
            return "low"
        return "medium"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value > 100:
            return "very_high"
        if value > 50:
            return "high"
        if value > 20:
            return "medium"
        return "low"
    return "medium"


def normalize_trend(value: Any) -> str:
    if isinstance(value, str):
        lower = value.lower()
        if "up" in lower or "increas" in lower:
            return "up"
        if "down" in lower or "decreas" in lower:
            return "down"
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if value > 0:
            return "up"
        if value < 0:
            return "down"
    return "stable"


def _normalize_region(raw: dict[str, Any], index: int) -> MarketRegion:
    load_count = _to_int(_first(raw, ("load_count", "loads", "count")))
    state = _first(raw, ("state", "state_code"))
    return MarketRegion(
        region_id=_to_str(_first(raw, ("id", "region_id", "code")) or f"region-{index}"),
        region_name=_to_str(
            _first(raw, ("name", "region_name", "market", "area")) or "Unknown",
        ),
        state=_to_str(state) if state is not None else None,
        load_count=load_count,
        avg_rate_per_mile=_to_float(_first(raw, ("avg_rate_per_mile", "rpm", "rate_per_mile"))),
        avg_rate=_to_float(_first(raw, ("avg_rate", "rate", "average_rate"))),
        demand_level=normalize_demand_level(  # type: ignore[arg-type]
            _first(raw, ("demand", "demand_level")) or load_count,
        ),
        trend=normalize_trend(_first(raw, ("trend", "direction"))),  # type: ignore[arg-type]
        trend_percent=_to_float(_first(raw, ("trend_percent", "change_percent"))),
    )


def normalize_market_insights(
    data: Any, equipment_type: str, distance_type: str,
) -> MarketInsights:
    """Normalize whichever market-conditions shape the provider returned."""
    body: dict[str, Any] = data if isinstance(data, dict) else {"data": data}
    raw_regions = _first(body, ("regions", "markets", "areas", "data")) or []

    regions: list[MarketRegion] = []
    if isinstance(raw_regions, list):
        for index, raw in enumerate(raw_regions):
            if isinstance(raw, dict):
                regions.append(_normalize_region(raw, index))

    national_rpm = _to_float(_first(body, ("national_avg_rpm", "avg_rpm")))
    if not national_rpm and regions:
        national_rpm = sum(r.avg_rate_per_mile for r in regions) / len(regions)

    total_loads = _to_int(_first(body, ("total_loads",)))
    if not total_loads:
        total_loads = sum(r.load_count for r in regions)

    return MarketInsights(
        equipment_type=equipment_type,
        distance_type=distance_type,
        last_updated=_to_str(
            _first(body, ("last_updated", "updated_at")) or utc_now().isoformat(),
        ),
        regions=regions,
        national_avg_rpm=national_rpm,
        total_loads=total_loads,
    )
