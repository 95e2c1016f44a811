"""Flight and hotel selection for a single trip.

The state is a product of three independent parts: the selected outbound
flight, the selected return flight and a map of normalized city label to the
selected hotel for that city. Every transition checks its preconditions before
touching any ``selected`` flag, so a failed call leaves the state unchanged.
Each successful transition returns the ``(option_id, selected)`` pairs the
caller must persist.
"""
from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Optional, Sequence, Union

from trip_composer.errors import InvalidStateError, NotFoundError
from trip_composer.schemas import FlightOption, HotelOption, SelectionChange, normalize_city

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("TRIP_COMPOSER_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

FlightRef = Union[FlightOption, str]
HotelRef = Union[HotelOption, str]


class SelectionState:
    def __init__(
        self,
        trip_id: str,
        flights: Iterable[FlightOption] = (),
        hotels: Iterable[HotelOption] = (),
    ):
        self.trip_id = trip_id
        self._flights: Dict[str, FlightOption] = {}
        self._hotels: Dict[str, HotelOption] = {}
        self._outbound: Optional[FlightOption] = None
        self._return: Optional[FlightOption] = None
        self._hotel_by_city: Dict[str, HotelOption] = {}

        for flight in flights:
            self._flights[flight.id] = self._owned(flight)
        for hotel in hotels:
            self._hotels[hotel.id] = self._owned(hotel)
        self._load_selected()

    # ------- queries -------
    @property
    def outbound(self) -> Optional[FlightOption]:
        return self._outbound

    @property
    def return_flight(self) -> Optional[FlightOption]:
        return self._return

    @property
    def selected_hotels(self) -> Dict[str, HotelOption]:
        return dict(self._hotel_by_city)

    @property
    def flights(self) -> List[FlightOption]:
        return list(self._flights.values())

    @property
    def hotels(self) -> List[HotelOption]:
        return list(self._hotels.values())

    def flight(self, option: FlightRef) -> FlightOption:
        option_id = option.id if isinstance(option, FlightOption) else option
        found = self._flights.get(option_id)
        if found is None or (isinstance(option, FlightOption) and option.trip_id != self.trip_id):
            raise NotFoundError(f"flight option {option_id} not found for trip {self.trip_id}")
        return found

    def hotel(self, option: HotelRef) -> HotelOption:
        option_id = option.id if isinstance(option, HotelOption) else option
        found = self._hotels.get(option_id)
        if found is None or (isinstance(option, HotelOption) and option.trip_id != self.trip_id):
            raise NotFoundError(f"hotel option {option_id} not found for trip {self.trip_id}")
        return found

    def hotel_for(self, city_label: str) -> Optional[HotelOption]:
        return self._hotel_by_city.get(normalize_city(city_label))

    def missing_hotel_cities(self, city_order: Sequence[str]) -> List[str]:
        """Distinct cities from ``city_order`` that still lack a selected hotel."""
        missing: List[str] = []
        seen: set[str] = set()
        for city in city_order:
            key = normalize_city(city)
            if not key or key in seen:
                continue
            seen.add(key)
            if key not in self._hotel_by_city:
                missing.append(city.strip())
        return missing

    def is_complete(self, city_order: Sequence[str]) -> bool:
        return (
            self._outbound is not None
            and self._return is not None
            and not self.missing_hotel_cities(city_order)
        )

    # ------- flight transitions -------
    def select_outbound(self, option: FlightRef) -> List[SelectionChange]:
        flight = self.flight(option)
        if flight.kind != "outbound":
            raise InvalidStateError(f"flight option {flight.id} is a {flight.kind} flight, not outbound")

        changes: List[SelectionChange] = []
        previous = self._outbound
        if previous is not None and previous.id != flight.id:
            # the return leg was searched with the old outbound's continuation token
            changes.extend(self._clear_return())
            previous.selected = False
            changes.append(SelectionChange(option_id=previous.id, selected=False))
            logger.info(
                "Trip %s outbound changed %s -> %s; return selection cleared",
                self.trip_id,
                previous.id,
                flight.id,
            )

        flight.selected = True
        self._outbound = flight
        changes.append(SelectionChange(option_id=flight.id, selected=True))
        return changes

    def select_return(self, option: FlightRef) -> List[SelectionChange]:
        flight = self.flight(option)
        if flight.kind != "return":
            raise InvalidStateError(f"flight option {flight.id} is a {flight.kind} flight, not return")
        if self._outbound is None:
            raise InvalidStateError(
                f"trip {self.trip_id} has no outbound flight selected; choose one before the return"
            )

        changes: List[SelectionChange] = []
        previous = self._return
        if previous is not None and previous.id != flight.id:
            previous.selected = False
            changes.append(SelectionChange(option_id=previous.id, selected=False))

        flight.selected = True
        self._return = flight
        changes.append(SelectionChange(option_id=flight.id, selected=True))
        return changes

    def unselect_outbound(self) -> List[SelectionChange]:
        changes = self._clear_return()
        if self._outbound is not None:
            self._outbound.selected = False
            changes.append(SelectionChange(option_id=self._outbound.id, selected=False))
            self._outbound = None
        return changes

    def unselect_return(self) -> List[SelectionChange]:
        return self._clear_return()

    # ------- hotel transitions -------
    def select_hotel(self, option: HotelRef) -> List[SelectionChange]:
        hotel = self.hotel(option)
        city = hotel.city_key

        changes: List[SelectionChange] = []
        previous = self._hotel_by_city.get(city)
        if previous is not None and previous.id != hotel.id:
            previous.selected = False
            changes.append(SelectionChange(option_id=previous.id, selected=False))

        hotel.selected = True
        self._hotel_by_city[city] = hotel
        changes.append(SelectionChange(option_id=hotel.id, selected=True))
        logger.debug("Trip %s hotel %s selected for %s", self.trip_id, hotel.id, city)
        return changes

    def unselect_hotel(self, option: HotelRef) -> List[SelectionChange]:
        hotel = self.hotel(option)
        hotel.selected = False
        current = self._hotel_by_city.get(hotel.city_key)
        if current is not None and current.id == hotel.id:
            del self._hotel_by_city[hotel.city_key]
        return [SelectionChange(option_id=hotel.id, selected=False)]

    # ------- internals -------
    def _clear_return(self) -> List[SelectionChange]:
        if self._return is None:
            return []
        self._return.selected = False
        cleared = SelectionChange(option_id=self._return.id, selected=False)
        self._return = None
        return [cleared]

    def _owned(self, option):
        if option.trip_id != self.trip_id:
            raise NotFoundError(f"option {option.id} belongs to trip {option.trip_id}, not {self.trip_id}")
        return option

    def _load_selected(self) -> None:
        for flight in self._flights.values():
            if not flight.selected:
                continue
            slot = self._outbound if flight.kind == "outbound" else self._return
            if slot is not None:
                raise InvalidStateError(
                    f"trip {self.trip_id} has more than one selected {flight.kind} flight"
                )
            if flight.kind == "outbound":
                self._outbound = flight
            else:
                self._return = flight
        if self._return is not None and self._outbound is None:
            raise InvalidStateError(
                f"trip {self.trip_id} has a selected return flight {self._return.id} without an outbound"
            )

        for hotel in self._hotels.values():
            if not hotel.selected:
                continue
            city = hotel.city_key
            if city in self._hotel_by_city:
                raise InvalidStateError(
                    f"trip {self.trip_id} has more than one selected hotel in '{hotel.city_label}'"
                )
            self._hotel_by_city[city] = hotel
