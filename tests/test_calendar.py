"""Tests for the Google Calendar provider: busy time and booking events."""

import json
from datetime import timedelta

import httpx
import pytest

from slotbook.errors import UpstreamUnavailableError
from slotbook.models_google_calendar import GoogleCalendarIntegration
from slotbook.services.google_calendar_service import (
    GoogleCalendarProvider,
    decrypt_token,
    encrypt_token,
)
from slotbook.shared.time_utils import Interval, to_utc_naive, utcnow

from tests.helpers import add_booking, at, make_event_type, make_user


def connect(db, host, expires_in=timedelta(hours=1), **fields):
    integration = GoogleCalendarIntegration(
        user_id=host.id,
        access_token=encrypt_token("access-1"),
        refresh_token=encrypt_token("refresh-1"),
        token_expires_at=to_utc_naive(utcnow()) + expires_in,
        **fields,
    )
    db.add(integration)
    db.commit()
    return integration


def google(busy=None, status_code=200, refreshed_token="access-2"):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": refreshed_token, "expires_in": 3600})
        calendar_id = json.loads(request.content)["items"][0]["id"]
        return httpx.Response(status_code, json={"calendars": {calendar_id: {"busy": busy or []}}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


def test_tokens_are_encrypted_at_rest():
    token = encrypt_token("secret-token")
    assert token != "secret-token"
    assert decrypt_token(token) == "secret-token"


async def test_host_without_calendar_has_no_busy_time(db):
    host = make_user(db, "host@example.com")
    client, requests = google()

    assert await GoogleCalendarProvider(db, client).get_busy_intervals(host.id, at(0), at(23)) == []
    assert requests == []


async def test_busy_time_is_read_from_freebusy(db):
    host = make_user(db, "host@example.com")
    connect(db, host, calendar_id="work@example.com")
    client, requests = google(busy=[{"start": "2025-01-06T09:00:00Z", "end": "2025-01-06T09:45:00Z"}])

    busy = await GoogleCalendarProvider(db, client).get_busy_intervals(host.id, at(0), at(23))

    assert busy == [Interval(at(9), at(9, 45))]
    assert requests[0].headers["Authorization"] == "Bearer access-1"
    assert json.loads(requests[0].content)["timeMin"] == "2025-01-06T00:00:00Z"


async def test_expired_token_is_refreshed(db):
    host = make_user(db, "host@example.com")
    integration = connect(db, host, expires_in=timedelta(minutes=-1))
    client, requests = google()

    await GoogleCalendarProvider(db, client).get_busy_intervals(host.id, at(0), at(23))

    assert [r.url.path for r in requests] == ["/token", "/calendar/v3/freeBusy"]
    assert requests[1].headers["Authorization"] == "Bearer access-2"
    db.refresh(integration)
    assert decrypt_token(integration.access_token) == "access-2"


async def test_conflict_checking_switched_off(db):
    host = make_user(db, "host@example.com")
    connect(db, host, check_conflicts=False)
    client, requests = google(busy=[{"start": "2025-01-06T09:00:00Z", "end": "2025-01-06T10:00:00Z"}])

    assert await GoogleCalendarProvider(db, client).get_busy_intervals(host.id, at(0), at(23)) == []


async def test_api_error_raises_upstream_unavailable(db):
    host = make_user(db, "host@example.com")
    connect(db, host)
    client, _ = google(status_code=500)

    with pytest.raises(UpstreamUnavailableError):
        await GoogleCalendarProvider(db, client).get_busy_intervals(host.id, at(0), at(23))


def google_events(status_code=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "DELETE":
            return httpx.Response(status_code)
        return httpx.Response(status_code, json={"id": "evt123"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


async def test_booking_becomes_a_calendar_event(db):
    host = make_user(db, "host@example.com", tz="Europe/Berlin")
    connect(db, host, calendar_id="work@example.com")
    event_type = make_event_type(db, owner=host, location="https://meet.example.com/intro")
    booking = add_booking(db, event_type, host, at(9))
    client, requests = google_events()

    assert await GoogleCalendarProvider(db, client).create_event(booking) == "evt123"

    (request,) = requests
    assert request.method == "POST"
    assert request.url.path == "/calendar/v3/calendars/work@example.com/events"
    assert request.url.params["sendUpdates"] == "all"
    body = json.loads(request.content)
    assert body["summary"] == "Intro call with Existing Guest"
    assert body["start"] == {"dateTime": "2025-01-06T09:00:00.000Z", "timeZone": "Europe/Berlin"}
    assert body["attendees"] == [{"email": "existing@example.com", "displayName": "Existing Guest"}]
    assert body["location"] == "https://meet.example.com/intro"


async def test_no_event_without_a_connected_calendar(db):
    host = make_user(db, "host@example.com")
    booking = add_booking(db, make_event_type(db, owner=host), host, at(9))
    client, requests = google_events()

    assert await GoogleCalendarProvider(db, client).create_event(booking) is None
    assert requests == []


@pytest.mark.parametrize("status_code", [204, 410])
async def test_delete_event_tolerates_already_removed(db, status_code):
    host = make_user(db, "host@example.com")
    connect(db, host)
    client, requests = google_events(status_code)

    await GoogleCalendarProvider(db, client).delete_event(host.id, "evt123")

    assert requests[0].method == "DELETE"
    assert requests[0].url.path == "/calendar/v3/calendars/primary/events/evt123"


async def test_event_write_error_raises_upstream_unavailable(db):
    host = make_user(db, "host@example.com")
    connect(db, host)
    booking = add_booking(db, make_event_type(db, owner=host), host, at(9))
    client, _ = google_events(status_code=500)

    with pytest.raises(UpstreamUnavailableError):
        await GoogleCalendarProvider(db, client).create_event(booking)
