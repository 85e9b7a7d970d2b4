"""Request-side contracts: trigger authorization, anti-forgery tokens, input validation.

The HTTP front end is outside this package; these functions are what it
calls before invoking a scan or writing a criterion.
"""

import hmac
import logging
import re
import secrets
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from loadscout.core.errors import ValidationError
from loadscout.core.schemas import SearchCriteria

logger = logging.getLogger(__name__)

SCHEDULER_HEADER = "x-vercel-cron"
SECRET_HEADER = "x-cron-secret"
CSRF_TOKEN_BYTES = 32

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def is_trigger_authorized(headers: Mapping[str, str], secret: str | None) -> bool:
    """Decide whether a scheduled-trigger request may run.

    Authorized when the platform scheduler header is present, when a bearer
    or secret header matches the configured secret, or when no secret is
    configured at all.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    if lowered.get(SCHEDULER_HEADER) == "1":
        return True
    if not secret:
        return True
    bearer = lowered.get("authorization", "")
    if bearer.startswith("Bearer ") and hmac.compare_digest(bearer[7:], secret):
        return True
    supplied = lowered.get(SECRET_HEADER)
    if supplied and hmac.compare_digest(supplied, secret):
        return True
    logger.warning("Rejected unauthorized trigger request")
    return False


def issue_csrf_token() -> str:
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def verify_csrf_token(expected: str | None, supplied: str | None) -> bool:
    """Constant-time comparison; a missing value on either side fails."""
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode(), supplied.encode())


class CriteriaInput(BaseModel):
    """Caller-supplied criterion fields, validated before anything is stored."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    origin_city: str = Field(min_length=1, max_length=100)
    origin_state: str | None = Field(default=None, min_length=2, max_length=2)
    origin_states: list[str] = Field(default_factory=list, max_length=50)
    dest_city: str | None = Field(default=None, max_length=100)
    destination_state: str | None = Field(default=None, min_length=2, max_length=2)
    destination_states: list[str] = Field(default_factory=list, max_length=50)
    equipment_type: str | list[str] | None = None
    pickup_distance: int = Field(default=50, ge=1, le=500)
    pickup_date: str | None = None
    pickup_date_end: str | None = None
    booking_type: str = "ALL"
    min_rate: float | None = Field(default=None, ge=0)
    min_rpm: float | None = Field(default=None, ge=0, le=100)
    max_weight: int | None = Field(default=None, ge=0, le=100000)
    is_backhaul: bool = False

    @field_validator("origin_state", "destination_state", "dest_city", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("origin_state", "destination_state")
    @classmethod
    def upper_state(cls, v: str | None) -> str | None:
        return v.upper() if v else None

    @field_validator("origin_states", "destination_states")
    @classmethod
    def upper_states(cls, v: list[str]) -> list[str]:
        states = [s.strip().upper() for s in v if s.strip()]
        if any(len(s) != 2 for s in states):
            msg = "state codes must be two letters"
            raise ValueError(msg)
        return states

    @field_validator("pickup_date", "pickup_date_end")
    @classmethod
    def iso_date(cls, v: str | None) -> str | None:
        if v and not _DATE_RE.match(v):
            msg = "must be an ISO date (YYYY-MM-DD)"
            raise ValueError(msg)
        return v or None


def validate_criteria_input(data: Any, owner_id: str) -> SearchCriteria:
    """Validate raw caller input into a SearchCriteria or raise ValidationError."""
    try:
        parsed = CriteriaInput.model_validate(data)
    except PydanticValidationError as e:
        detail = ", ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(detail) from e
    return SearchCriteria(owner_id=owner_id, **parsed.model_dump())
