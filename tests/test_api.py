import pytest
from fastapi.testclient import TestClient

from trip_composer.errors import ExternalFetchError
from trip_composer.main import app
from trip_composer.orchestrator import SessionRegistry

DETAIL_LINK = "https://serpapi.com/search.json?engine=google_hotels&property_token=p1"


@pytest.fixture(autouse=True)
def fresh_sessions(monkeypatch):
    monkeypatch.setattr(app.state, "sessions", SessionRegistry())


def _sample_payload() -> dict:
    return {
        "trip": {
            "id": "t1",
            "city_order": ["Paris", "Amsterdam"],
            "start_date": "2025-10-10",
            "end_date": "2025-10-16",
        },
        "flights": [
            {"id": "o1", "trip_id": "t1", "kind": "outbound", "price": 640, "continuation_token": "tok-o1"},
            {"id": "o2", "trip_id": "t1", "kind": "outbound", "price": 590, "continuation_token": "tok-o2"},
            {"id": "r1", "trip_id": "t1", "kind": "return", "price": 410, "departure_time": "2025-10-16 09:20"},
        ],
        "hotels": [
            {
                "id": "h1",
                "trip_id": "t1",
                "city_label": "Paris",
                "detail_link": DETAIL_LINK,
            },
            {"id": "h2", "trip_id": "t1", "city_label": "Amsterdam"},
        ],
        "feedback": [
            {"id": "a1", "trip_id": "t1", "location": "Paris", "status": "pending"},
            {"id": "a2", "trip_id": "t1", "location": "Paris", "status": "liked"},
        ],
    }


def _client() -> TestClient:
    client = TestClient(app)
    response = client.put("/api/trips/t1/session", json=_sample_payload())
    assert response.status_code == 201
    assert response.json() == {"trip_id": "t1", "ready": False}
    return client


def test_session_load_rejects_mismatched_trip_id():
    client = TestClient(app)
    response = client.put("/api/trips/other/session", json=_sample_payload())
    assert response.status_code == 422


def test_unknown_session_is_404():
    client = TestClient(app)
    response = client.post("/api/trips/missing/flights/outbound/o1")
    assert response.status_code == 404


def test_return_before_outbound_is_conflict():
    client = _client()
    response = client.post("/api/trips/t1/flights/return/r1")
    assert response.status_code == 409


def test_selection_flow_returns_changes_and_plan():
    client = _client()

    client.post("/api/trips/t1/flights/outbound/o1")
    client.post("/api/trips/t1/flights/return/r1")
    switched = client.post("/api/trips/t1/flights/outbound/o2").json()
    assert switched["changes"] == [
        {"option_id": "r1", "selected": False},
        {"option_id": "o1", "selected": False},
        {"option_id": "o2", "selected": True},
    ]

    client.post("/api/trips/t1/flights/return/r1")
    client.post("/api/trips/t1/hotels/h1/selection")
    final = client.post("/api/trips/t1/hotels/h2/selection").json()
    assert final["ready"] is True

    plan = client.get("/api/trips/t1/day-plan")
    assert plan.status_code == 200
    body = plan.json()
    assert body["total_days"] == 7
    assert body["departure_hour"] == 9
    assert [a["day_count"] for a in body["allocations"]] == [6, 1]
    assert body["allocations"][1]["effective_day_count"] == 1
    assert body["allocations"][1]["start_date"] == "2025-10-16"


def test_day_plan_before_ready_is_conflict():
    client = _client()
    assert client.get("/api/trips/t1/day-plan").status_code == 409


def test_preference_update_and_pending_guard():
    client = _client()

    response = client.post("/api/trips/t1/activities/a1/preference", json={"preference": "maybe"})
    assert response.status_code == 200
    assert response.json()["preference"]["status"] == "maybe"

    response = client.post("/api/trips/t1/activities/a1/preference", json={"preference": "pending"})
    assert response.status_code == 409

    response = client.post("/api/trips/t1/activities/a1/preference", json={"preference": "loved"})
    assert response.status_code == 422


def test_booking_options_are_cached_per_session(monkeypatch):
    calls = []

    class FakeClient:
        async def property_details(self, link):
            calls.append(link)
            return {"prices": [{"source": "Expedia", "rate": 199}]}

    monkeypatch.setattr("trip_composer.main.SerpApiClient", FakeClient)
    client = _client()

    first = client.get("/api/trips/t1/hotels/h1/booking-options").json()
    second = client.get("/api/trips/t1/hotels/h1/booking-options").json()

    assert first["cached"] is False
    assert second["cached"] is True
    assert second["payload"] == first["payload"]
    assert len(calls) == 1


def test_booking_option_fetch_failure_is_bad_gateway(monkeypatch):
    class FailingClient:
        async def property_details(self, link):
            raise ExternalFetchError("SerpAPI key not configured")

    monkeypatch.setattr("trip_composer.main.SerpApiClient", FailingClient)
    client = _client()

    response = client.get("/api/trips/t1/hotels/h1/booking-options")
    assert response.status_code == 502


def test_booking_option_timeout_is_gateway_timeout(monkeypatch):
    class SlowClient:
        async def property_details(self, link):
            raise ExternalFetchError("timed out while contacting SerpAPI", status_code=504)

    monkeypatch.setattr("trip_composer.main.SerpApiClient", SlowClient)
    client = _client()

    response = client.get("/api/trips/t1/hotels/h1/booking-options")
    assert response.status_code == 504


def test_session_load_rejects_reversed_dates():
    payload = _sample_payload()
    payload["trip"]["start_date"], payload["trip"]["end_date"] = "2025-10-16", "2025-10-10"

    response = TestClient(app).put("/api/trips/t1/session", json=payload)
    assert response.status_code == 422


def test_session_load_rejects_blank_hotel_city():
    payload = _sample_payload()
    payload["hotels"][1]["city_label"] = "  "

    response = TestClient(app).put("/api/trips/t1/session", json=payload)
    assert response.status_code == 422


def test_session_load_rejects_return_selected_without_outbound():
    payload = _sample_payload()
    payload["flights"][2]["selected"] = True

    response = TestClient(app).put("/api/trips/t1/session", json=payload)
    assert response.status_code == 409


def test_reloading_a_session_keeps_fetched_booking_options(monkeypatch):
    calls = []

    class FakeClient:
        async def property_details(self, link):
            calls.append(link)
            return {"prices": [{"source": "Expedia", "rate": 199}]}

    monkeypatch.setattr("trip_composer.main.SerpApiClient", FakeClient)
    client = _client()
    client.get("/api/trips/t1/hotels/h1/booking-options")

    assert client.put("/api/trips/t1/session", json=_sample_payload()).status_code == 201
    again = client.get("/api/trips/t1/hotels/h1/booking-options").json()

    assert again["cached"] is True
    assert len(calls) == 1


def test_session_load_accepts_persisted_cache_entries(monkeypatch):
    class UnusedClient:
        async def property_details(self, link):
            raise AssertionError("persisted entry should have been served")

    monkeypatch.setattr("trip_composer.main.SerpApiClient", UnusedClient)
    payload = _sample_payload()
    payload["cache_entries"] = [
        {
            "hotel_id": "h1",
            "detail_link": DETAIL_LINK,
            "payload": {"prices": [{"source": "Hotels.com", "rate": 205}]},
            "fetched_at": "2025-09-30T18:00:00Z",
        }
    ]
    client = TestClient(app)
    assert client.put("/api/trips/t1/session", json=payload).status_code == 201

    body = client.get("/api/trips/t1/hotels/h1/booking-options").json()
    assert body["cached"] is True
    assert body["fetched_at"].startswith("2025-09-30T18:00:00")
    assert body["payload"] == {"prices": [{"source": "Hotels.com", "rate": 205}]}
