"""Tests for trigger authorization, CSRF tokens and criteria input validation."""

import pytest

from loadscout.api.triggers import (
    is_trigger_authorized,
    issue_csrf_token,
    validate_criteria_input,
    verify_csrf_token,
)
from loadscout.core.errors import ValidationError


class TestTriggerAuthorization:
    def test_scheduler_header(self) -> None:
        assert is_trigger_authorized({"X-Vercel-Cron": "1"}, "secret") is True

    def test_bearer_secret(self) -> None:
        assert is_trigger_authorized({"Authorization": "Bearer secret"}, "secret") is True

    def test_secret_header(self) -> None:
        assert is_trigger_authorized({"x-cron-secret": "secret"}, "secret") is True

    def test_wrong_secret(self) -> None:
        assert is_trigger_authorized({"Authorization": "Bearer nope"}, "secret") is False
        assert is_trigger_authorized({"x-cron-secret": "nope"}, "secret") is False

    def test_no_headers(self) -> None:
        assert is_trigger_authorized({}, "secret") is False

    def test_no_secret_configured(self) -> None:
        assert is_trigger_authorized({}, None) is True


class TestCsrf:
    def test_issued_tokens_are_unique_hex(self) -> None:
        a, b = issue_csrf_token(), issue_csrf_token()
        assert a != b
        assert len(bytes.fromhex(a)) == 32

    def test_verify(self) -> None:
        token = issue_csrf_token()
        assert verify_csrf_token(token, token) is True
        tampered = token[:-1] + ("1" if token.endswith("0") else "0")
        assert verify_csrf_token(token, tampered) is False
        assert verify_csrf_token(token, None) is False
        assert verify_csrf_token(None, token) is False


# ---------------------------------------------------------------------------
# Criteria input
# ---------------------------------------------------------------------------


class TestValidateCriteriaInput:
    def test_normalizes_fields(self) -> None:
        criteria = validate_criteria_input(
            {
                "origin_city": "  San Jose ",
                "origin_state": "ca",
                "destination_states": ["nv", " az "],
                "dest_city": "   ",
                "equipment_type": ["Dry Van", "Power Only"],
                "pickup_date": "2026-03-02",
                "unknown_field": "ignored",
            },
            owner_id="u1",
        )
        assert criteria.owner_id == "u1"
        assert criteria.origin_city == "San Jose"
        assert criteria.origin_state == "CA"
        assert criteria.destination_states == ["NV", "AZ"]
        assert criteria.dest_city is None
        assert criteria.equipment_type == "Dry Van"
        assert criteria.pickup_date == "2026-03-02"

    def test_missing_origin_city(self) -> None:
        with pytest.raises(ValidationError, match="origin_city"):
            validate_criteria_input({"origin_state": "CA"}, owner_id="u1")

    @pytest.mark.parametrize(
        "data",
        [
            {"origin_city": "X", "pickup_distance": 0},
            {"origin_city": "X", "pickup_distance": 501},
            {"origin_city": "X", "min_rate": -1},
            {"origin_city": "X", "origin_states": ["CAL"]},
            {"origin_city": "X", "pickup_date": "03/02/2026"},
            {"origin_city": "X", "origin_state": "California"},
        ],
    )
    def test_rejected(self, data: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            validate_criteria_input(data, owner_id="u1")

    def test_defaults(self) -> None:
        criteria = validate_criteria_input({"origin_city": "Reno"}, owner_id="guest-1")
        assert criteria.pickup_distance == 50
        assert criteria.booking_type == "ALL"
        assert criteria.is_backhaul is False
