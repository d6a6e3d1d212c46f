"""
Google Calendar Service
Supplies external busy time for hosts who connected Google Calendar
"""
import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import quote

import httpx
from cryptography.fernet import Fernet
from sqlalchemy.orm import Session

from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, SECRET_KEY
from ..errors import UpstreamUnavailableError
from ..models import Booking
from ..models_google_calendar import GoogleCalendarIntegration
from ..shared.time_utils import Interval, from_utc_naive, isoformat_z, to_utc_naive, utcnow

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


def get_cipher() -> Fernet:
    """Fernet keyed from SECRET_KEY, so any secret length works"""
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest()))


def encrypt_token(token: str) -> str:
    return get_cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    return get_cipher().decrypt(token.encode()).decode()


async def get_valid_access_token(
    integration: GoogleCalendarIntegration,
    db: Session,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """
    Get a valid access token, refreshing if necessary
    Returns None if refresh fails
    """
    try:
        # Token still valid for at least 5 minutes, decrypt and return
        if integration.token_expires_at > to_utc_naive(utcnow()) + timedelta(minutes=5):
            return decrypt_token(integration.access_token)

        logger.info("🔄 Google Calendar token expired, refreshing...")
        refresh_token = decrypt_token(integration.refresh_token)

        async with httpx.AsyncClient() if client is None else _borrowed(client) as http:
            response = await http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )

        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: HTTP {response.status_code}")
            return None

        tokens = response.json()
        new_access_token = tokens.get("access_token")
        expires_in = tokens.get("expires_in", 3600)
        if not new_access_token:
            logger.error("❌ No access token in refresh response")
            return None

        integration.access_token = encrypt_token(new_access_token)
        integration.token_expires_at = to_utc_naive(utcnow()) + timedelta(seconds=expires_in)
        db.commit()

        logger.info("✅ Google Calendar token refreshed successfully")
        return new_access_token

    except Exception as e:
        logger.error(f"❌ Error getting valid access token: {str(e)}")
        return None


class _borrowed:
    """Async context wrapper that leaves a caller-owned client open"""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def __aenter__(self) -> httpx.AsyncClient:
        return self.client

    async def __aexit__(self, *exc_info) -> None:
        return None

class CalendarProvider:
    """
    External calendar collaborator.

    Reads busy time for one host (UTC instants). Hosts may also have bookings
    mirrored into their calendar; the default provider keeps no events.
    """

    async def get_busy_intervals(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        raise NotImplementedError

    async def create_event(self, booking: Booking) -> Optional[str]:
        """Mirror a booking into the host's calendar. Returns the event id, or None."""
        return None

    async def delete_event(self, host_id: int, event_id: str) -> None:
        return None


class NullCalendarProvider(CalendarProvider):
    """No external calendars connected"""

    async def get_busy_intervals(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        return []


class GoogleCalendarProvider(CalendarProvider):
    """
    Google Calendar: busy time from the freeBusy API, bookings mirrored as events.

    Hosts without an integration, or with conflict checking switched off, have
    no external busy time. Any failure to talk to a connected calendar raises
    UpstreamUnavailableError so callers can apply their failure policy.
    """

    def __init__(self, db: Session, client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self.client = client

    def _integration(self, host_id: int) -> Optional[GoogleCalendarIntegration]:
        return (
            self.db.query(GoogleCalendarIntegration)
            .filter(GoogleCalendarIntegration.user_id == host_id)
            .first()
        )

    async def _access_token(self, integration: GoogleCalendarIntegration) -> str:
        access_token = await get_valid_access_token(integration, self.db, self.client)
        if not access_token:
            raise UpstreamUnavailableError("Google Calendar credentials are no longer valid")
        return access_token

    async def _request(self, method: str, url: str, access_token: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient() if self.client is None else _borrowed(self.client) as http:
                return await http.request(
                    method, url, headers={"Authorization": f"Bearer {access_token}"}, **kwargs
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Google Calendar {method} {url} failed: {e}")
            raise UpstreamUnavailableError("Google Calendar is unreachable") from e

    async def get_busy_intervals(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        integration = self._integration(host_id)
        if not integration or not integration.check_conflicts:
            return []

        access_token = await self._access_token(integration)
        calendar_id = integration.calendar_id or "primary"
        body = {
            "timeMin": range_start.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "timeMax": range_end.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "items": [{"id": calendar_id}],
        }
        response = await self._request("POST", f"{GOOGLE_CALENDAR_API}/freeBusy", access_token, json=body)

        if response.status_code != 200:
            logger.error(f"❌ Google freeBusy returned HTTP {response.status_code} for host {host_id}")
            raise UpstreamUnavailableError(f"Google Calendar returned HTTP {response.status_code}")

        calendar = response.json().get("calendars", {}).get(calendar_id, {})
        if calendar.get("errors"):
            logger.error(f"❌ Google freeBusy errors for host {host_id}: {calendar['errors']}")
            raise UpstreamUnavailableError("Google Calendar reported an error")

        return [_parse_busy(entry) for entry in calendar.get("busy", [])]

    async def create_event(self, booking: Booking) -> Optional[str]:
        integration = self._integration(booking.host_id)
        if not integration:
            return None

        access_token = await self._access_token(integration)
        url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(integration.calendar_id or 'primary', safe='')}/events"
        response = await self._request(
            "POST", url, access_token, params={"sendUpdates": "all"}, json=_event_body(booking)
        )
        if response.status_code not in (200, 201):
            logger.error(f"❌ Google event insert returned HTTP {response.status_code} for booking {booking.id}")
            raise UpstreamUnavailableError(f"Google Calendar returned HTTP {response.status_code}")

        event_id = response.json().get("id")
        logger.info(f"📆 Booking {booking.id} added to Google Calendar of host {booking.host_id}")
        return event_id

    async def delete_event(self, host_id: int, event_id: str) -> None:
        integration = self._integration(host_id)
        if not integration:
            return

        access_token = await self._access_token(integration)
        calendar_id = quote(integration.calendar_id or "primary", safe="")
        url = f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events/{quote(event_id, safe='')}"
        response = await self._request("DELETE", url, access_token, params={"sendUpdates": "all"})
        # 404/410: already removed on Google's side
        if response.status_code not in (200, 204, 404, 410):
            logger.error(f"❌ Google event delete returned HTTP {response.status_code} for event {event_id}")
            raise UpstreamUnavailableError(f"Google Calendar returned HTTP {response.status_code}")
        logger.info(f"📆 Google Calendar event {event_id} removed for host {host_id}")


def _event_body(booking: Booking) -> dict:
    event_type = booking.event_type
    host_timezone = booking.host.timezone or "UTC"
    body = {
        "summary": f"{event_type.title} with {booking.guest_name}",
        "description": event_type.description or f"Booking with {booking.guest_name} ({booking.guest_email})",
        "start": {"dateTime": isoformat_z(booking.start_time), "timeZone": host_timezone},
        "end": {"dateTime": isoformat_z(booking.end_time), "timeZone": host_timezone},
        "attendees": [{"email": booking.guest_email, "displayName": booking.guest_name}],
        "reminders": {
            "useDefault": False,
            "overrides": [{"method": "email", "minutes": 60}, {"method": "popup", "minutes": 10}],
        },
    }
    if event_type.location:
        body["location"] = event_type.location
    return body


def _parse_busy(entry: dict) -> Interval:
    start = datetime.fromisoformat(entry["start"].replace("Z", "+00:00"))
    end = datetime.fromisoformat(entry["end"].replace("Z", "+00:00"))
    return Interval(from_utc_naive(start), from_utc_naive(end))
