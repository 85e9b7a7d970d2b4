"""Tests for the CloudTrucks payload parser."""

import json

from loadscout.platforms.cloudtrucks.parser import (
    extract_inline_loads,
    normalize_demand_level,
    normalize_load,
    normalize_market_insights,
    normalize_trend,
    parse_loads,
)


def _raw(**overrides: object) -> dict[str, object]:
    """Build a raw provider load with sensible defaults."""
    raw: dict[str, object] = {
        "id": "L-100",
        "origin_city": "San Jose",
        "origin_state": "CA",
        "dest_city": "Las Vegas",
        "dest_state": "NV",
        "trip_rate": 1800,
        "trip_distance_mi": 530,
        "equipment": ["DRY_VAN"],
        "broker_name": "Acme Logistics",
        "origin_pickup_date": "2026-03-02T08:00:00Z",
        "instant_book": True,
        "truck_weight_lb": 42000,
        "total_deadhead_mi": 12.5,
    }
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# normalize_load
# ---------------------------------------------------------------------------


class TestNormalizeLoad:
    def test_full_payload(self) -> None:
        load = normalize_load(_raw())
        assert load is not None
        assert load.id == "L-100"
        assert load.origin_city == "San Jose"
        assert load.dest_state == "NV"
        assert load.rate == 1800.0
        assert load.distance_mi == 530.0
        assert load.equipment == ["DRY_VAN"]
        assert load.instant_book is True
        assert load.weight_lb == 42000
        assert load.deadhead_mi == 12.5

    def test_missing_id_returns_none(self) -> None:
        raw = _raw()
        del raw["id"]
        assert normalize_load(raw) is None

    def test_alternate_keys(self) -> None:
        load = normalize_load({
            "load_id": 42,
            "pickup_city": "Reno",
            "destination_state": "UT",
            "price": "$1,250.00",
            "miles": "500",
            "equipment_type": "POWER_ONLY",
            "is_instant_book": "true",
        })
        assert load is not None
        assert load.id == "42"
        assert load.origin_city == "Reno"
        assert load.dest_state == "UT"
        assert load.rate == 1250.0
        assert load.distance_mi == 500.0
        assert load.equipment == ["POWER_ONLY"]
        assert load.instant_book is True

    def test_stops_fallback(self) -> None:
        load = normalize_load({
            "id": "S1",
            "stops": [
                {"city": "Fresno", "state": "CA", "date_start": "2026-03-02"},
                {"city": "Boise", "state": "ID", "date_end": "2026-03-04"},
            ],
        })
        assert load is not None
        assert (load.origin_city, load.origin_state) == ("Fresno", "CA")
        assert (load.dest_city, load.dest_state) == ("Boise", "ID")
        assert load.pickup_date == "2026-03-02"
        assert load.delivery_date == "2026-03-04"

    def test_missing_optionals_default(self) -> None:
        load = normalize_load({"id": "bare"})
        assert load is not None
        assert load.rate == 0.0
        assert load.rpm == 0.0
        assert load.equipment == []
        assert load.broker_name == ""

    def test_rpm(self) -> None:
        load = normalize_load(_raw(trip_rate=1000, trip_distance_mi=400))
        assert load is not None
        assert load.rpm == 2.5


# ---------------------------------------------------------------------------
# parse_loads
# ---------------------------------------------------------------------------


class TestParseLoads:
    def test_list(self) -> None:
        loads = parse_loads([_raw(id="A"), _raw(id="B")])
        assert [load.id for load in loads] == ["A", "B"]

    def test_json_string(self) -> None:
        assert [load.id for load in parse_loads(json.dumps([_raw(id="A")]))] == ["A"]

    def test_single_dict(self) -> None:
        assert [load.id for load in parse_loads(_raw(id="A"))] == ["A"]

    def test_wrapper_dict(self) -> None:
        assert [load.id for load in parse_loads({"results": [_raw(id="A")]})] == ["A"]

    def test_skips_bad_items(self) -> None:
        loads = parse_loads([_raw(id="A"), "junk", {"no_id": True}, _raw(id="B")])
        assert [load.id for load in loads] == ["A", "B"]

    def test_invalid_json(self) -> None:
        assert parse_loads("{not json") == []

    def test_unsupported_type(self) -> None:
        assert parse_loads(42) == []


class TestExtractInlineLoads:
    def test_found(self) -> None:
        assert extract_inline_loads({"loads": [1]}) == [1]

    def test_absent(self) -> None:
        assert extract_inline_loads({"channel_name": "abc"}) is None


# ---------------------------------------------------------------------------
# Market insights
# ---------------------------------------------------------------------------


class TestMarketInsights:
    def test_demand_levels(self) -> None:
        assert normalize_demand_level("Very High") == "very_high"
        assert normalize_demand_level("HOT") == "very_high"
        assert normalize_demand_level("high") == "high"
        assert normalize_demand_level("low") == "low"
        assert normalize_demand_level(150) == "very_high"
        assert normalize_demand_level(60) == "high"
        assert normalize_demand_level(30) == "medium"
        assert normalize_demand_level(5) == "low"
        assert normalize_demand_level(None) == "medium"

    def test_trends(self) -> None:
        assert normalize_trend("increasing") == "up"
        assert normalize_trend("Down") == "down"
        assert normalize_trend(-3.2) == "down"
        assert normalize_trend(0) == "stable"
        assert normalize_trend(None) == "stable"

    def test_regions_and_derived_totals(self) -> None:
        insights = normalize_market_insights(
            {
                "markets": [
                    {"name": "Bay Area", "state": "CA", "load_count": 80, "rpm": 2.5},
                    {"market": "Phoenix", "loads": 20, "rate_per_mile": "3.5", "trend": 4},
                ],
            },
            "DRY_VAN",
            "Long",
        )
        assert insights.equipment_type == "DRY_VAN"
        assert insights.distance_type == "Long"
        assert [r.region_name for r in insights.regions] == ["Bay Area", "Phoenix"]
        assert insights.regions[0].demand_level == "high"
        assert insights.regions[1].region_id == "region-1"
        assert insights.regions[1].trend == "up"
        assert insights.total_loads == 100
        assert insights.national_avg_rpm == 3.0

    def test_list_body(self) -> None:
        insights = normalize_market_insights([{"name": "X", "load_count": 1}], "DRY_VAN", "Short")
        assert insights.total_loads == 1
        assert insights.last_updated
