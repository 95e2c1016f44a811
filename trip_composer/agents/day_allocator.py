"""Split a trip's days across an ordered, possibly repeating list of cities."""
from __future__ import annotations

from fractions import Fraction
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from trip_composer.schemas import CityDayAllocation

DEFAULT_TRIP_DAYS = 7
LATE_ARRIVAL_HOUR = 19
EARLY_DEPARTURE_HOUR = 12

ActivityCounts = Union[Mapping[int, int], Sequence[int]]


def allocate(
    city_order: Sequence[str],
    total_days: int,
    activity_counts: ActivityCounts | None = None,
    arrival_hour: Optional[int] = None,
    departure_hour: Optional[int] = None,
    start_date: Optional[date] = None,
) -> List[CityDayAllocation]:
    """Return one allocation per entry of ``city_order``.

    Every visit gets at least one day when ``total_days`` allows it; the rest
    is shared in proportion to each visit's activity count. A late arrival
    (hour >= 19) costs the first visit a usable day, and an early departure
    (hour <= 12) costs the last visit one. Dates run contiguously from
    ``start_date`` using the raw day counts.
    """
    n = len(city_order)
    if n == 0:
        return []

    total = max(0, int(total_days))
    weights = _weights(activity_counts, n)

    if total < n:
        days = _split_evenly(total, n)
    else:
        extra = _distribute(total - n, weights)
        days = [1 + e for e in extra]

    effective = list(days)
    if arrival_hour is not None and arrival_hour >= LATE_ARRIVAL_HOUR:
        effective[0] = _trim_edge_day(effective[0])
    if departure_hour is not None and departure_hour <= EARLY_DEPARTURE_HOUR:
        effective[-1] = _trim_edge_day(effective[-1])

    out: List[CityDayAllocation] = []
    seen: Dict[str, int] = {}
    cursor = start_date
    for idx, city in enumerate(city_order):
        label = city.strip()
        key = label.casefold()
        occurrence_index = seen.get(key, 0)
        seen[key] = occurrence_index + 1

        start = end = None
        if cursor is not None and days[idx] > 0:
            start = cursor
            end = cursor + timedelta(days=days[idx] - 1)
            cursor = cursor + timedelta(days=days[idx])

        out.append(
            CityDayAllocation(
                city_label=label,
                occurrence_index=occurrence_index,
                day_count=days[idx],
                effective_day_count=min(days[idx], effective[idx]),
                start_date=start,
                end_date=end,
            )
        )
    return out


def resolve_total_days(
    start: date | datetime | str | None,
    end: date | datetime | str | None,
    explicit: Optional[int] = None,
) -> int:
    """Inclusive date span when both dates are known, else the explicit count, else the default."""
    start_dt, end_dt = _coerce_date(start), _coerce_date(end)
    if start_dt is not None and end_dt is not None:
        if end_dt < start_dt:
            raise ValueError(f"end date {end_dt} is before start date {start_dt}")
        return (end_dt - start_dt).days + 1
    if explicit is not None:
        return max(0, int(explicit))
    return DEFAULT_TRIP_DAYS


def hour_of(value: Any) -> Optional[int]:
    """Hour of day from a provider timestamp such as ``"2025-10-10 20:15"``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.hour
    text = str(value).strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%d %H:%M", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).hour
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).hour
    except ValueError:
        return None


def _distribute(remaining: int, weights: List[int]) -> List[int]:
    """Share ``remaining`` days by weight, half-up rounding plus drift repair.

    Drift left by rounding is repaired one day at a time: a shortfall goes to
    the visits rounded down the furthest, an excess comes off the visits
    rounded up the furthest. Ties keep city order.
    """
    n = len(weights)
    weight_sum = sum(weights)
    if remaining <= 0:
        return [0] * n
    if weight_sum <= 0:
        return _split_evenly(remaining, n)

    # Exact shares; half-up rounding done in integers.
    proportional = [Fraction(w * remaining, weight_sum) for w in weights]
    rounded = [(2 * w * remaining + weight_sum) // (2 * weight_sum) for w in weights]
    drift = remaining - sum(rounded)

    if drift > 0:
        order = sorted(range(n), key=lambda i: (-(proportional[i] - rounded[i]), i))
        while drift > 0:
            for i in order:
                if drift == 0:
                    break
                rounded[i] += 1
                drift -= 1
    elif drift < 0:
        order = sorted(range(n), key=lambda i: (-(rounded[i] - proportional[i]), i))
        while drift < 0:
            for i in order:
                if drift == 0:
                    break
                if rounded[i] > 0:
                    rounded[i] -= 1
                    drift += 1
    return rounded


def _split_evenly(total: int, buckets: int) -> List[int]:
    if buckets <= 0:
        return []
    base = [total // buckets] * buckets
    for i in range(total % buckets):
        base[i] += 1
    return base


def _weights(counts: ActivityCounts | None, n: int) -> List[int]:
    if counts is None:
        return [0] * n
    if isinstance(counts, Mapping):
        return [max(0, int(counts.get(i, 0) or 0)) for i in range(n)]
    values = [max(0, int(c or 0)) for c in list(counts)[:n]]
    return values + [0] * (n - len(values))


def _trim_edge_day(days: int) -> int:
    if days <= 0:
        return 0
    return max(1, days - 1)


def _coerce_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        try:
            return datetime.strptime(text, "%Y-%m-%d").date()
        except ValueError:
            return None
