"""Filter chain for load matching.

Criterion scans use:
  1. DeduplicationFilter  - in-memory within run, by provider load id
  2. MinRateFilter        - optional flat-rate floor
  3. MinRpmFilter         - optional rate-per-mile floor

Backhaul searches add:
  4. PickupAfterFilter    - backhaul must be picked up after the anchor delivers
  5. AvoidStatesFilter    - destination state not in the avoid list
  6. MaxDeadheadFilter    - deadhead miles within the preference
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from loadscout.core.schemas import LoadRecord, SearchCriteria, parse_when

logger = logging.getLogger(__name__)

# A filter is a callable that takes loads and returns a subset.
Filter = Callable[[list[LoadRecord]], list[LoadRecord]]


class DeduplicationFilter:
    """Remove duplicates by provider load id within a single run.

    Stateful: tracks seen IDs across calls within the same filter instance,
    which is how multi-state queries of one criterion are merged.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        result: list[LoadRecord] = []
        for load in loads:
            if load.id not in self._seen:
                self._seen.add(load.id)
                result.append(load)
        deduped = len(loads) - len(result)
        if deduped:
            logger.debug("DeduplicationFilter: removed %d duplicates", deduped)
        return result


class MinRateFilter:
    """Keep loads paying at least ``min_rate``. A None floor passes everything."""

    def __init__(self, min_rate: float | None) -> None:
        self._min_rate = min_rate

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        if not self._min_rate:
            return loads
        result = [load for load in loads if load.rate >= self._min_rate]
        _log_removed("MinRateFilter", loads, result)
        return result


class MinRpmFilter:
    """Keep loads whose rate per mile meets the floor."""

    def __init__(self, min_rpm: float | None) -> None:
        self._min_rpm = min_rpm

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        if not self._min_rpm:
            return loads
        result = [load for load in loads if load.rpm >= self._min_rpm]
        _log_removed("MinRpmFilter", loads, result)
        return result


class PickupAfterFilter:
    """Keep loads picked up strictly after ``after``.

    Loads with no parseable pickup date are kept; the provider omits the
    date on some listings.
    """

    def __init__(self, after: datetime | None) -> None:
        self._after = after

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        if self._after is None:
            return loads
        result = []
        for load in loads:
            pickup = parse_when(load.pickup_date)
            if pickup is None or pickup > self._after:
                result.append(load)
        _log_removed("PickupAfterFilter", loads, result)
        return result


class AvoidStatesFilter:
    """Drop loads delivering into an avoided state (case-insensitive)."""

    def __init__(self, avoid_states: Iterable[str]) -> None:
        self._avoid = {s.strip().upper() for s in avoid_states if s.strip()}

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        if not self._avoid:
            return loads
        result = [load for load in loads if load.dest_state.upper() not in self._avoid]
        _log_removed("AvoidStatesFilter", loads, result)
        return result


class MaxDeadheadFilter:
    def __init__(self, max_deadhead_mi: float) -> None:
        self._max = max_deadhead_mi

    def __call__(self, loads: list[LoadRecord]) -> list[LoadRecord]:
        result = [load for load in loads if load.deadhead_mi <= self._max]
        _log_removed("MaxDeadheadFilter", loads, result)
        return result


def run_filter_chain(
    loads: list[LoadRecord],
    filters: list[Filter],
) -> list[LoadRecord]:
    """Apply filters in order, returning the surviving loads."""
    result = loads
    for f in filters:
        result = f(result)
    return result


def criteria_filters(criteria: SearchCriteria) -> list[Filter]:
    """Client-side filters for a saved criterion (the provider has no rate floor)."""
    return [
        MinRateFilter(criteria.min_rate),
        MinRpmFilter(criteria.min_rpm),
    ]


def rank_by_rpm(loads: list[LoadRecord], limit: int | None = None) -> list[LoadRecord]:
    """Sort loads by rate per mile, best first, optionally truncated."""
    ranked = sorted(loads, key=lambda load: load.rpm, reverse=True)
    return ranked[:limit] if limit is not None else ranked


def _log_removed(name: str, before: list[LoadRecord], after: list[LoadRecord]) -> None:
    removed = len(before) - len(after)
    if removed:
        logger.debug("%s: removed %d loads", name, removed)
