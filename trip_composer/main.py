from __future__ import annotations

import os
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from trip_composer.errors import ExternalFetchError, InvalidStateError, NotFoundError, TripComposerError
from trip_composer.orchestrator import SessionRegistry, TripSession
from trip_composer.schemas import (
    BookingOptionCacheEntry,
    DayPlanResponse,
    PreferenceUpdate,
    SelectionResponse,
    SessionLoad,
)
from trip_composer.tools.serpapi import SerpApiClient

load_dotenv()

app = FastAPI(title="Trip Composer API")
app.state.sessions = SessionRegistry()

# Scope with TRIP_COMPOSER_ALLOWED_ORIGINS (comma separated) outside local development.
raw_origins = os.getenv("TRIP_COMPOSER_ALLOWED_ORIGINS") or "*"
allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allowed_origins:
    allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(exc: TripComposerError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ExternalFetchError):
        status = 504 if exc.status_code == 504 else 502
        return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _session(request: Request, trip_id: str) -> TripSession:
    try:
        return request.app.state.sessions.get(trip_id)
    except NotFoundError as exc:
        raise _http_error(exc) from exc


def _selection(request: Request, trip_id: str, transition: str, *args: Any) -> SelectionResponse:
    session = _session(request, trip_id)
    try:
        changes = getattr(session, transition)(*args)
    except TripComposerError as exc:
        raise _http_error(exc) from exc
    return SelectionResponse(trip_id=trip_id, changes=changes, ready=session.ready)


@app.put("/api/trips/{trip_id}/session", status_code=201)
async def load_session(trip_id: str, request: Request, payload: SessionLoad = Body(...)) -> Dict[str, Any]:
    """Load a trip's options and feedback as persisted by the caller."""
    if payload.trip.id != trip_id:
        raise HTTPException(status_code=422, detail="trip id in body does not match path")
    try:
        sessions = request.app.state.sessions
        # a reload keeps the booking options already fetched for this trip
        cache = sessions.get(trip_id).cache if trip_id in sessions else None
        session = TripSession(
            payload.trip,
            payload.flights,
            payload.hotels,
            payload.feedback,
            cache=cache,
            cache_entries=payload.cache_entries,
        )
    except TripComposerError as exc:
        raise _http_error(exc) from exc
    request.app.state.sessions.load(session)
    return {"trip_id": trip_id, "ready": session.ready}


@app.post("/api/trips/{trip_id}/flights/outbound/{option_id}")
async def select_outbound(trip_id: str, option_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "select_outbound", option_id)


@app.delete("/api/trips/{trip_id}/flights/outbound")
async def unselect_outbound(trip_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "unselect_outbound")


@app.post("/api/trips/{trip_id}/flights/return/{option_id}")
async def select_return(trip_id: str, option_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "select_return", option_id)


@app.delete("/api/trips/{trip_id}/flights/return")
async def unselect_return(trip_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "unselect_return")


@app.post("/api/trips/{trip_id}/hotels/{option_id}/selection")
async def select_hotel(trip_id: str, option_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "select_hotel", option_id)


@app.delete("/api/trips/{trip_id}/hotels/{option_id}/selection")
async def unselect_hotel(trip_id: str, option_id: str, request: Request) -> SelectionResponse:
    return _selection(request, trip_id, "unselect_hotel", option_id)


@app.post("/api/trips/{trip_id}/activities/{feedback_id}/preference")
async def update_preference(
    trip_id: str,
    feedback_id: str,
    request: Request,
    update: PreferenceUpdate = Body(...),
) -> Dict[str, Any]:
    session = _session(request, trip_id)
    try:
        item = session.record_feedback(feedback_id, update.preference)
    except TripComposerError as exc:
        raise _http_error(exc) from exc
    return {"trip_id": trip_id, "preference": item.model_dump(mode="json")}


@app.get("/api/trips/{trip_id}/hotels/{option_id}/booking-options")
async def booking_options(trip_id: str, option_id: str, request: Request) -> BookingOptionCacheEntry:
    session = _session(request, trip_id)
    client = SerpApiClient()
    try:
        return await session.booking_options(option_id, client.property_details)
    except TripComposerError as exc:
        raise _http_error(exc) from exc


@app.get("/api/trips/{trip_id}/day-plan")
async def day_plan(trip_id: str, request: Request) -> DayPlanResponse:
    session = _session(request, trip_id)
    try:
        return session.day_plan()
    except TripComposerError as exc:
        raise _http_error(exc) from exc
