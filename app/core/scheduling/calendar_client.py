"""
HTTP client for the calendar service.

Talks to the Google Calendar v3 REST API:
- POST /freeBusy - Busy intervals for a teacher's calendar
- POST /calendars/{id}/events - Create a booking event
- DELETE /calendars/{id}/events/{eventId} - Remove a booking event
- GET /calendars/{id} - Access check at startup
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from app.config import get_settings
from app.core.scheduling.timeutils import BusyInterval

logger = logging.getLogger(__name__)


class CalendarClientError(Exception):
    """Raised when a calendar call that must not fail silently fails."""
    pass


def _parse_timestamp(value: str) -> datetime:
    """RFC 3339 timestamp -> aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _calendar_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='')}"


CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


def load_service_account_credentials(settings) -> Optional[service_account.Credentials]:
    """Service account credentials from settings, inline JSON first."""
    if settings.google_service_account_json:
        info = json.loads(settings.google_service_account_json)
        return service_account.Credentials.from_service_account_info(info, scopes=CALENDAR_SCOPES)
    if settings.google_service_account_file:
        return service_account.Credentials.from_service_account_file(
            settings.google_service_account_file, scopes=CALENDAR_SCOPES
        )
    return None


class ServiceAccountAuth(httpx.Auth):
    """
    Bearer auth backed by service account credentials.

    The access token is refreshed whenever it is missing or expired, and
    once more if the API still answers 401. A failed refresh surfaces as
    httpx.RequestError so callers handle it like any transport failure.
    """

    def __init__(self, credentials: service_account.Credentials):
        self._credentials = credentials
        self._transport = GoogleAuthRequest()
        self._lock = asyncio.Lock()

    async def _refresh(self, request: httpx.Request, force: bool = False) -> None:
        async with self._lock:
            if not force and self._credentials.valid:
                return
            try:
                # google-auth refreshes over blocking HTTP
                await asyncio.to_thread(self._credentials.refresh, self._transport)
            except GoogleAuthError as e:
                raise httpx.RequestError(f"Calendar token refresh failed: {e}", request=request) from e
            logger.info("Calendar access token refreshed")

    async def async_auth_flow(self, request: httpx.Request):
        await self._refresh(request)
        request.headers["Authorization"] = f"Bearer {self._credentials.token}"
        response = yield request

        if response.status_code == 401:
            await self._refresh(request, force=True)
            request.headers["Authorization"] = f"Bearer {self._credentials.token}"
            yield request


@dataclass
class CalendarEvent:
    """A created calendar event."""

    id: str
    html_link: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CalendarEvent":
        """Create from API response dict."""
        return cls(id=data.get("id", ""), html_link=data.get("htmlLink"))


class CalendarClient:
    """
    Async client for the calendar REST API.

    Read paths raise CalendarClientError so callers can decide how to
    degrade; deletion never raises and reports success as a bool.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        time_zone: Optional[str] = None,
        credentials: Optional[service_account.Credentials] = None,
    ):
        """Initialize client.

        Without an explicit token or credentials, a service account from
        settings is preferred over the static token.

        Args:
            base_url: Calendar API base URL (defaults to settings)
            token: Static OAuth bearer token
            timeout: Request timeout in seconds
            time_zone: IANA zone sent with created events
            credentials: Service account credentials, refreshed as they expire
        """
        settings = get_settings()
        self.base_url = base_url or settings.calendar_api_url
        self.credentials = credentials
        if token is None and credentials is None:
            self.credentials = load_service_account_credentials(settings)
        if token is None and self.credentials is None:
            token = settings.calendar_api_token
        self.token = token
        self.timeout = timeout or settings.calendar_timeout
        self.time_zone = time_zone or settings.timezone
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                auth=ServiceAccountAuth(self.credentials) if self.credentials else None,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def verify_access(self, calendar_id: str) -> bool:
        """Check that the calendar exists and is readable."""
        client = await self._get_client()

        try:
            response = await client.get(_calendar_path(calendar_id))
            response.raise_for_status()
            data = response.json()
            logger.info(
                f"Calendar reachable: {data.get('summary')} ({calendar_id}) "
                f"TZ: {data.get('timeZone')}"
            )
            return True

        except httpx.HTTPError as e:
            logger.error(f"Calendar access check failed for {calendar_id}: {e}")
            return False

    async def get_busy_intervals(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Busy periods of a calendar within [time_min, time_max).

        Raises:
            CalendarClientError: If the query fails or the calendar reports errors
        """
        client = await self._get_client()

        payload = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "timeZone": self.time_zone,
            "items": [{"id": calendar_id}],
        }

        try:
            response = await client.post("/freeBusy", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise CalendarClientError(f"freeBusy query failed: {e}") from e

        calendar = data.get("calendars", {}).get(calendar_id)
        if calendar is None:
            raise CalendarClientError(f"Calendar {calendar_id} missing from freeBusy response")
        if calendar.get("errors"):
            raise CalendarClientError(f"freeBusy errors for {calendar_id}: {calendar['errors']}")

        return [
            BusyInterval(
                start=_parse_timestamp(item["start"]),
                end=_parse_timestamp(item["end"]),
            )
            for item in calendar.get("busy", [])
        ]

    async def create_event(
        self,
        contact_id: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        description: str,
    ) -> CalendarEvent:
        """Create a booking event.

        Args:
            contact_id: Contact who booked (kept in private properties)
            calendar_id: Teacher calendar
            start: Event start (aware)
            end: Event end (aware)
            summary: Event title
            description: Event body

        Returns:
            CalendarEvent with the event id

        Raises:
            CalendarClientError: If the event could not be created
        """
        client = await self._get_client()

        payload = {
            "summary": summary,
            "description": f"Cita con {contact_id}. {description}",
            "start": {"dateTime": start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.time_zone},
            "extendedProperties": {"private": {"userPhone": contact_id}},
        }

        try:
            response = await client.post(f"{_calendar_path(calendar_id)}/events", json=payload)
            response.raise_for_status()
            event = CalendarEvent.from_dict(response.json())
        except httpx.HTTPError as e:
            raise CalendarClientError(f"Event creation failed: {e}") from e

        if not event.id:
            raise CalendarClientError("Event created without an id")

        logger.info(f"Calendar event created: {event.id} on {calendar_id}")
        return event

    async def delete_event(self, event_id: str, calendar_id: str) -> bool:
        """Delete an event. Already-deleted events count as success.

        Returns:
            True if the event no longer exists
        """
        client = await self._get_client()

        try:
            response = await client.delete(
                f"{_calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete event {event_id}: {e}")
            return False

        if response.status_code in (200, 204, 410):
            logger.info(f"Calendar event deleted: {event_id}")
            return True

        logger.error(f"Failed to delete event {event_id}: HTTP {response.status_code}")
        return False


# Singleton
_client: Optional[CalendarClient] = None


def get_calendar_client() -> CalendarClient:
    """Get singleton CalendarClient."""
    global _client
    if _client is None:
        _client = CalendarClient()
    return _client
