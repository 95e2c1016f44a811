from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FeedbackStatus = Literal["pending", "liked", "disliked", "maybe"]
FlightKind = Literal["outbound", "return"]


def normalize_city(label: Optional[str]) -> str:
    """Comparison key for city labels: trimmed and case-insensitive."""
    if not label:
        return ""
    return str(label).strip().casefold()


# ------- Inventory models -------
class Trip(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    city_order: List[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_days: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_dates(self) -> "Trip":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("trip end_date must not be before start_date")
        return self


class ActivityFeedback(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    trip_id: str
    location: Optional[str] = None
    status: FeedbackStatus = "pending"
    kind: Literal["activity", "restaurant"] = "activity"
    name: Optional[str] = None


class FlightOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    trip_id: str
    kind: FlightKind
    price: float = 0.0
    continuation_token: Optional[str] = None
    selected: bool = False
    departure_time: Optional[str] = None
    arrival_time: Optional[str] = None

    @model_validator(mode="after")
    def _check_token(self) -> "FlightOption":
        if self.kind == "outbound" and not self.continuation_token:
            raise ValueError("outbound flight options require a continuation_token")
        if self.kind == "return" and self.continuation_token:
            raise ValueError("return flight options must not carry a continuation_token")
        return self


class HotelOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    trip_id: str
    city_label: str
    selected: bool = False
    name: Optional[str] = None
    price: Optional[float] = None
    detail_link: Optional[str] = None

    @field_validator("city_label")
    @classmethod
    def _check_city(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("hotel options require a non-blank city_label")
        return value

    @property
    def city_key(self) -> str:
        return normalize_city(self.city_label)


# ------- Engine outputs -------
class SelectionChange(BaseModel):
    option_id: str
    selected: bool


class BookingOptionCacheEntry(BaseModel):
    hotel_id: str
    detail_link: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime
    cached: bool = False


class CityDayAllocation(BaseModel):
    city_label: str
    occurrence_index: int
    day_count: int
    effective_day_count: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None


# ------- API payloads -------
class SessionLoad(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trip: Trip
    flights: List[FlightOption] = Field(default_factory=list)
    hotels: List[HotelOption] = Field(default_factory=list)
    feedback: List[ActivityFeedback] = Field(default_factory=list)
    cache_entries: List[BookingOptionCacheEntry] = Field(default_factory=list)


class PreferenceUpdate(BaseModel):
    preference: FeedbackStatus


class SelectionResponse(BaseModel):
    trip_id: str
    changes: List[SelectionChange] = Field(default_factory=list)
    ready: bool = False


class DayPlanResponse(BaseModel):
    trip_id: str
    total_days: int
    arrival_hour: Optional[int] = None
    departure_hour: Optional[int] = None
    allocations: List[CityDayAllocation] = Field(default_factory=list)
