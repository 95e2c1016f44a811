"""Reduce swipe feedback into per-city counts used by the day allocator."""
from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, List, Sequence

from trip_composer.errors import InvalidStateError
from trip_composer.schemas import ActivityFeedback, FeedbackStatus, normalize_city

InclusionPolicy = Callable[[ActivityFeedback], bool]

STATUSES: tuple[str, ...] = ("pending", "liked", "disliked", "maybe")


def has_location(item: ActivityFeedback) -> bool:
    """Default policy: anything carrying a location counts, whatever its status."""
    return bool(normalize_city(item.location))


def liked_only(item: ActivityFeedback) -> bool:
    return item.status == "liked" and has_location(item)


def count_by_city(
    feedback: Iterable[ActivityFeedback],
    include: InclusionPolicy = has_location,
) -> Dict[str, int]:
    """Group activity feedback by normalized city and return group sizes."""
    counts: Dict[str, int] = {}
    for item in feedback:
        if item.kind != "activity":
            continue
        city = normalize_city(item.location)
        if not city or not include(item):
            continue
        counts[city] = counts.get(city, 0) + 1
    return counts


def per_occurrence_counts(
    feedback: Iterable[ActivityFeedback],
    city_order: Sequence[str],
    include: InclusionPolicy = has_location,
) -> Dict[int, int]:
    """Split each city's activity count across its visits in ``city_order``.

    A city visited ``k`` times gets slices of ``ceil(count / k)`` items in
    visit order, so the last visit may receive fewer items (or none) when the
    count does not divide evenly. The result is keyed by ``city_order`` index.
    """
    totals = count_by_city(feedback, include)
    keys: List[str] = [normalize_city(city) for city in city_order]
    occurrences: Dict[str, int] = {}
    for key in keys:
        occurrences[key] = occurrences.get(key, 0) + 1

    seen: Dict[str, int] = {}
    out: Dict[int, int] = {}
    for idx, key in enumerate(keys):
        occurrence_index = seen.get(key, 0)
        seen[key] = occurrence_index + 1

        total = totals.get(key, 0) if key else 0
        if not total:
            out[idx] = 0
            continue
        per_occurrence = math.ceil(total / occurrences[key])
        start = occurrence_index * per_occurrence
        end = min(start + per_occurrence, total)
        out[idx] = max(0, end - start)
    return out


def status_counts(feedback: Iterable[ActivityFeedback]) -> Dict[str, Dict[str, Dict[str, int]]]:
    """Per-kind, per-city, per-status tallies for activities and restaurants.

    Items without a usable location are ignored.
    """
    out: Dict[str, Dict[str, Dict[str, int]]] = {"activity": {}, "restaurant": {}}
    for item in feedback:
        city = normalize_city(item.location)
        if not city:
            continue
        bucket = out[item.kind].setdefault(city, {status: 0 for status in STATUSES})
        bucket[item.status] += 1
    return out


def record_feedback(item: ActivityFeedback, status: FeedbackStatus) -> ActivityFeedback:
    """Apply a swipe to ``item`` in place.

    Once an item leaves ``pending`` it can be re-swiped between the decided
    statuses but never returned to ``pending``.
    """
    if status == "pending" and item.status != "pending":
        raise InvalidStateError(
            f"feedback {item.id} is already '{item.status}' and cannot return to pending"
        )
    item.status = status
    return item
