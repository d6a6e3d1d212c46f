"""HTTP tests for the public booking flow, error envelope, idempotency and auth."""

import socket
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from slotbook.database import get_db
from slotbook.domain.bookings.router import _idempotency_store_key
from slotbook.domain.bookings.schemas import BookingCreate
from slotbook.domain.scheduling.router import get_calendar_provider
from slotbook.kv_store import MemoryKeyValueStore
from slotbook.main import app
from slotbook.models import Booking
from slotbook.services.google_calendar_service import NullCalendarProvider

from tests.helpers import add_rule, make_event_type, make_user

PUBLIC_ADDRINFO = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 443))]


@pytest.fixture
def client(session_factory, scheduler):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_calendar_provider] = lambda: NullCalendarProvider()
    app.state.kv_store = MemoryKeyValueStore()
    app.state.delivery_scheduler = scheduler
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def day() -> date:
    return datetime.now(timezone.utc).date() + timedelta(days=3)


@pytest.fixture
def host(db, day):
    host, api_key = make_user(db, "host@example.com", with_api_key=True)
    add_rule(db, host, day_of_week=(day.weekday() + 1) % 7, start="09:00", end="10:00")
    host.api_key = api_key
    return host


@pytest.fixture
def event_type(db, host):
    return make_event_type(db, owner=host)


def auth(host) -> dict:
    return {"Authorization": f"Bearer {host.api_key}"}


def booking_body(event_type, day, time="09:00"):
    return {
        "eventTypeId": event_type.id,
        "start": f"{day.isoformat()}T{time}:00Z",
        "guest": {"name": "Ada Lovelace", "email": "ada@example.com", "timezone": "Europe/London"},
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200


def test_list_book_and_conflict(client, event_type, day):
    response = client.get(f"/event-types/{event_type.id}/slots", params={"date": day.isoformat()})
    assert response.status_code == 200
    assert len(response.json()["slots"]) == 2

    response = client.post("/bookings", json=booking_body(event_type, day))
    assert response.status_code == 200
    booking = response.json()
    assert booking["status"] == "CONFIRMED"
    assert booking["occurrences"] == []

    response = client.get(f"/event-types/{event_type.id}/slots", params={"date": day.isoformat()})
    assert [s[11:16] for s in response.json()["slots"]] == ["09:30"]

    response = client.post("/bookings", json=booking_body(event_type, day))
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "SlotUnavailable"


def test_unknown_event_type_is_not_found(client, day):
    response = client.get("/event-types/999/slots", params={"date": day.isoformat()})
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "NotFound"


def test_malformed_start_is_invalid_input(client, event_type, day):
    body = booking_body(event_type, day)
    body["start"] = "next monday"
    response = client.post("/bookings", json=body)
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "InvalidInput"


def test_validation_errors_use_the_error_envelope(client):
    response = client.post("/bookings", json={"eventTypeId": 1})
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["kind"] == "InvalidInput"
    assert error["details"]


def test_idempotency_key_replays_the_first_booking(client, session_factory, event_type, day):
    headers = {"Idempotency-Key": "retry-123"}
    first = client.post("/bookings", json=booking_body(event_type, day), headers=headers)
    second = client.post("/bookings", json=booking_body(event_type, day), headers=headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["uid"] == second.json()["uid"]
    with session_factory() as db:
        assert db.query(Booking).count() == 1


def test_failed_request_releases_its_idempotency_key(client, event_type, day):
    headers = {"Idempotency-Key": "retry-456"}
    body = booking_body(event_type, day)
    body["start"] = f"{day.isoformat()}T07:00:00Z"
    assert client.post("/bookings", json=body, headers=headers).status_code == 409

    response = client.post("/bookings", json=booking_body(event_type, day), headers=headers)

    assert response.status_code == 200


def test_booking_endpoint_is_rate_limited(client):
    body = {
        "eventTypeId": 999,
        "start": "2030-01-07T09:00:00Z",
        "guest": {"name": "Ada", "email": "ada@example.com"},
    }
    for _ in range(5):
        assert client.post("/bookings", json=body).status_code == 404

    response = client.post("/bookings", json=body)

    assert response.status_code == 429
    assert "Retry-After" in response.headers
    error = response.json()["error"]
    assert error["kind"] == "RateLimited"
    assert error["details"]["limit"] == 5


def test_owner_endpoints_require_an_api_key(client):
    assert client.get("/bookings").status_code == 401
    response = client.get("/bookings", headers={"Authorization": "Bearer sb_unknown"})

    assert response.status_code == 401
    assert response.json() == {"error": {"kind": "Unauthorized", "message": "Invalid API key"}}


def test_in_progress_idempotency_key_is_a_conflict(client, event_type, day):
    body = booking_body(event_type, day)
    app.state.kv_store.set(_idempotency_store_key("retry-789", BookingCreate(**body)), "pending", ttl=60)

    response = client.post("/bookings", json=body, headers={"Idempotency-Key": "retry-789"})

    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "Conflict"


def test_unknown_route_uses_the_error_envelope(client):
    response = client.get("/no-such-page")

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "NotFound"


def test_host_lists_and_cancels_bookings(client, host, event_type, day):
    created = client.post("/bookings", json=booking_body(event_type, day)).json()

    listed = client.get("/bookings", headers=auth(host))
    assert [b["uid"] for b in listed.json()] == [created["uid"]]

    response = client.post(f"/bookings/{created['id']}/cancel", json={"reason": "Sick"}, headers=auth(host))
    assert response.status_code == 200
    assert response.json()[0]["status"] == "CANCELLED"

    again = client.post(f"/bookings/{created['id']}/cancel", json={}, headers=auth(host))
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "AlreadyCancelled"


def test_guest_reschedules_by_uid(client, event_type, day):
    created = client.post("/bookings", json=booking_body(event_type, day)).json()

    response = client.post(
        f"/bookings/uid/{created['uid']}/reschedule", json={"start": f"{day.isoformat()}T09:30:00Z"}
    )

    assert response.status_code == 200
    assert response.json()["rescheduledFromId"] == created["id"]
    assert client.get(f"/bookings/uid/{created['uid']}").json()["status"] == "CANCELLED"


def test_webhook_secret_is_returned_once(client, host):
    with patch("socket.getaddrinfo", return_value=PUBLIC_ADDRINFO):
        response = client.post(
            "/webhooks",
            json={"url": "https://hooks.example.com/booking", "events": ["booking.created"]},
            headers=auth(host),
        )
    assert response.status_code == 200
    assert response.json()["secret"].startswith("whsec_")

    listed = client.get("/webhooks", headers=auth(host)).json()
    assert "secret" not in listed[0]


def test_month_view_lists_available_dates(client, event_type, day):
    response = client.get(
        f"/event-types/{event_type.id}/slots/month", params={"month": day.strftime("%Y-%m"), "timezone": "UTC"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["month"] == day.strftime("%Y-%m")
    assert day.isoformat() in body["availableDates"]


def test_month_view_rejects_malformed_month(client, event_type):
    response = client.get(f"/event-types/{event_type.id}/slots/month", params={"month": "2025-13"})
    assert response.status_code == 422


def test_public_holidays_and_default_work_days(client, db):
    user, api_key = make_user(db, "ny@example.com", tz="America/New_York", with_api_key=True)
    headers = {"Authorization": f"Bearer {api_key}"}

    response = client.get("/availability/holidays", params={"year": 2025, "month": 7}, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "country": "US",
        "year": 2025,
        "holidays": [{"date": "2025-07-04", "name": "Independence Day"}],
    }
    defaults = client.get("/availability/defaults", headers=headers).json()
    assert defaults["workDays"] == [1, 2, 3, 4, 5]
