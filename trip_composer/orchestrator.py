# trip_composer/orchestrator.py
from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional
import logging

from trip_composer.schemas import (
    ActivityFeedback,
    BookingOptionCacheEntry,
    CityDayAllocation,
    DayPlanResponse,
    FeedbackStatus,
    FlightOption,
    HotelOption,
    SelectionChange,
    Trip,
)
from trip_composer.errors import InvalidStateError, NotFoundError
from trip_composer.agents.preference_aggregator import (
    InclusionPolicy,
    has_location,
    per_occurrence_counts,
    record_feedback,
    status_counts,
)
from trip_composer.agents.selection_state import SelectionState
from trip_composer.agents.day_allocator import allocate, hour_of, resolve_total_days
from trip_composer.tools.booking_cache import BookingOptionCache, Fetcher

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("TRIP_COMPOSER_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False


class TripSession:
    """Caller-owned engine state for one trip.

    Bundles the selection state, the swipe feedback and a booking-option
    cache. Nothing here persists: transitions hand back the flag changes to
    write and ``plan_days`` hands back the allocation to render.
    """

    def __init__(
        self,
        trip: Trip,
        flights: Iterable[FlightOption] = (),
        hotels: Iterable[HotelOption] = (),
        feedback: Iterable[ActivityFeedback] = (),
        *,
        cache: Optional[BookingOptionCache] = None,
        cache_entries: Iterable[BookingOptionCacheEntry] = (),
        include: InclusionPolicy = has_location,
    ):
        self.trip = trip
        self.selection = SelectionState(trip.id, flights, hotels)
        self.cache = cache if cache is not None else BookingOptionCache()
        entries = list(cache_entries)
        # unknown hotel ids raise NotFoundError
        for entry in entries:
            self.selection.hotel(entry.hotel_id)
        self.cache.load(entries)
        self.include = include
        self._feedback: Dict[str, ActivityFeedback] = {}
        for item in feedback:
            if item.trip_id != trip.id:
                raise NotFoundError(f"feedback {item.id} belongs to trip {item.trip_id}, not {trip.id}")
            self._feedback[item.id] = item
        logger.info(
            "Session loaded for trip %s: %d cities, %d flights, %d hotels, %d feedback items",
            trip.id,
            len(trip.city_order),
            len(self.selection.flights),
            len(self.selection.hotels),
            len(self._feedback),
        )

    @property
    def feedback(self) -> List[ActivityFeedback]:
        return list(self._feedback.values())

    @property
    def ready(self) -> bool:
        return self.selection.is_complete(self.trip.city_order)

    # Selection passthroughs keep callers on one object per trip.
    def select_outbound(self, option: FlightOption | str) -> List[SelectionChange]:
        return self.selection.select_outbound(option)

    def select_return(self, option: FlightOption | str) -> List[SelectionChange]:
        return self.selection.select_return(option)

    def unselect_outbound(self) -> List[SelectionChange]:
        return self.selection.unselect_outbound()

    def unselect_return(self) -> List[SelectionChange]:
        return self.selection.unselect_return()

    def select_hotel(self, option: HotelOption | str) -> List[SelectionChange]:
        return self.selection.select_hotel(option)

    def unselect_hotel(self, option: HotelOption | str) -> List[SelectionChange]:
        return self.selection.unselect_hotel(option)

    def record_feedback(self, feedback_id: str, status: FeedbackStatus) -> ActivityFeedback:
        item = self._feedback.get(feedback_id)
        if item is None:
            raise NotFoundError(f"feedback {feedback_id} not found for trip {self.trip.id}")
        return record_feedback(item, status)

    def feedback_summary(self) -> Dict[str, Dict[str, Dict[str, int]]]:
        return status_counts(self._feedback.values())

    async def booking_options(self, hotel_id: str, fetch: Fetcher) -> BookingOptionCacheEntry:
        hotel = self.selection.hotel(hotel_id)
        if not hotel.detail_link:
            raise InvalidStateError(f"hotel option {hotel.id} has no property details link")
        return await self.cache.get_booking_options(hotel.id, hotel.detail_link, fetch)

    def plan_days(self, *, require_ready: bool = True) -> List[CityDayAllocation]:
        """Allocate the trip's days across its city order.

        Arrival and departure hours come from the selected outbound arrival
        and return departure times, when the provider supplied them.
        """
        return self.day_plan(require_ready=require_ready).allocations

    def day_plan(self, *, require_ready: bool = True) -> DayPlanResponse:
        city_order = self.trip.city_order
        if not city_order:
            raise InvalidStateError(f"trip {self.trip.id} has no cities to plan")
        if require_ready and not self.ready:
            raise InvalidStateError(self._readiness_message())

        total_days = resolve_total_days(self.trip.start_date, self.trip.end_date, self.trip.total_days)
        counts = per_occurrence_counts(self._feedback.values(), city_order, self.include)
        outbound = self.selection.outbound
        inbound = self.selection.return_flight
        arrival_hour = hour_of(outbound.arrival_time) if outbound else None
        departure_hour = hour_of(inbound.departure_time) if inbound else None

        allocations = allocate(
            city_order,
            total_days,
            counts,
            arrival_hour=arrival_hour,
            departure_hour=departure_hour,
            start_date=self.trip.start_date,
        )
        logger.info(
            "Day plan for trip %s: %d days across %d stops (%s)",
            self.trip.id,
            total_days,
            len(allocations),
            ", ".join(f"{a.city_label}={a.day_count}" for a in allocations),
        )
        return DayPlanResponse(
            trip_id=self.trip.id,
            total_days=total_days,
            arrival_hour=arrival_hour,
            departure_hour=departure_hour,
            allocations=allocations,
        )

    def _readiness_message(self) -> str:
        missing: List[str] = []
        if self.selection.outbound is None:
            missing.append("outbound flight")
        if self.selection.return_flight is None:
            missing.append("return flight")
        cities = self.selection.missing_hotel_cities(self.trip.city_order)
        if cities:
            missing.append("hotel in " + ", ".join(cities))
        return f"trip {self.trip.id} is not ready for planning; missing {'; '.join(missing)}"


class SessionRegistry:
    """In-process map of trip id to its session, one owner per process."""

    def __init__(self) -> None:
        self._sessions: Dict[str, TripSession] = {}

    def load(self, session: TripSession) -> TripSession:
        self._sessions[session.trip.id] = session
        return session

    def get(self, trip_id: str) -> TripSession:
        session = self._sessions.get(trip_id)
        if session is None:
            raise NotFoundError(f"no session loaded for trip {trip_id}")
        return session

    def drop(self, trip_id: str) -> bool:
        return self._sessions.pop(trip_id, None) is not None

    def __contains__(self, trip_id: object) -> bool:
        return trip_id in self._sessions
