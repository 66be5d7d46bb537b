"""Tests for the calendar HTTP client."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timedelta, timezone

import httpx
from google.auth.exceptions import RefreshError

from app.core.scheduling.calendar_client import (
    CALENDAR_SCOPES,
    CalendarClient,
    CalendarClientError,
    CalendarEvent,
    ServiceAccountAuth,
    load_service_account_credentials,
)

from tests.unit.conftest import BOGOTA

CALENDAR_ID = "carlos@school.edu"

CREDENTIALS = "app.core.scheduling.calendar_client.service_account.Credentials"
FROM_INFO = f"{CREDENTIALS}.from_service_account_info"
FROM_FILE = f"{CREDENTIALS}.from_service_account_file"


def make_response(status_code: int = 200, payload=None) -> MagicMock:
    """Mock httpx response."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError(
                f"HTTP {status_code}", request=MagicMock(), response=response
            )
        )
    else:
        response.raise_for_status = MagicMock()
    return response


class TestCalendarEvent:
    """Test CalendarEvent dataclass."""

    def test_from_dict(self):
        event = CalendarEvent.from_dict({"id": "evt-1", "htmlLink": "https://cal/evt-1"})

        assert event.id == "evt-1"
        assert event.html_link == "https://cal/evt-1"

    def test_from_dict_without_id(self):
        assert CalendarEvent.from_dict({}).id == ""


class TestCalendarClient:
    """Test CalendarClient methods."""

    @pytest.fixture
    def client(self):
        """Create client with test config."""
        return CalendarClient(
            base_url="https://calendar.test/v3",
            token="test-token",
            timeout=5.0,
            time_zone="America/Bogota",
        )

    @pytest.fixture
    def mock_httpx_client(self):
        """Create mock httpx client."""
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_get_busy_intervals(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=make_response(payload={
            "calendars": {
                CALENDAR_ID: {
                    "busy": [
                        {"start": "2026-10-21T19:00:00Z", "end": "2026-10-21T19:30:00Z"},
                    ]
                }
            }
        }))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, tzinfo=BOGOTA)
        busy = await client.get_busy_intervals(CALENDAR_ID, start, start + timedelta(days=1))

        assert len(busy) == 1
        assert busy[0].start == datetime(2026, 10, 21, 19, 0, tzinfo=timezone.utc)
        path = mock_httpx_client.post.call_args.args[0]
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert path == "/freeBusy"
        assert payload["items"] == [{"id": CALENDAR_ID}]
        assert payload["timeZone"] == "America/Bogota"

    @pytest.mark.asyncio
    async def test_get_busy_intervals_http_error(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=make_response(500))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, tzinfo=BOGOTA)
        with pytest.raises(CalendarClientError):
            await client.get_busy_intervals(CALENDAR_ID, start, start + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_get_busy_intervals_calendar_errors(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=make_response(payload={
            "calendars": {CALENDAR_ID: {"errors": [{"reason": "notFound"}]}}
        }))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, tzinfo=BOGOTA)
        with pytest.raises(CalendarClientError):
            await client.get_busy_intervals(CALENDAR_ID, start, start + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_create_event(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=make_response(payload={"id": "evt-9"}))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, 14, 0, tzinfo=BOGOTA)
        event = await client.create_event(
            contact_id="573001112233",
            calendar_id=CALENDAR_ID,
            start=start,
            end=start + timedelta(minutes=30),
            summary="Cita: María - Estudiante: Ana Pérez",
            description="Estudiante: Ana Pérez (ID: 1001)\n",
        )

        assert event.id == "evt-9"
        path = mock_httpx_client.post.call_args.args[0]
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert path == "/calendars/carlos%40school.edu/events"
        assert payload["start"] == {
            "dateTime": "2026-10-21T14:00:00-05:00",
            "timeZone": "America/Bogota",
        }
        assert payload["extendedProperties"]["private"]["userPhone"] == "573001112233"
        assert payload["description"].startswith("Cita con 573001112233.")

    @pytest.mark.asyncio
    async def test_create_event_without_id(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=make_response(payload={}))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, 14, 0, tzinfo=BOGOTA)
        with pytest.raises(CalendarClientError):
            await client.create_event(
                "573001112233", CALENDAR_ID, start, start + timedelta(minutes=30), "s", "d"
            )

    @pytest.mark.asyncio
    async def test_create_event_network_error(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client._client = mock_httpx_client

        start = datetime(2026, 10, 21, 14, 0, tzinfo=BOGOTA)
        with pytest.raises(CalendarClientError):
            await client.create_event(
                "573001112233", CALENDAR_ID, start, start + timedelta(minutes=30), "s", "d"
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,expected", [
        (204, True),
        (200, True),
        (410, True),
        (404, False),
        (500, False),
    ])
    async def test_delete_event(self, client, mock_httpx_client, status_code, expected):
        mock_httpx_client.delete = AsyncMock(return_value=make_response(status_code))
        client._client = mock_httpx_client

        assert await client.delete_event("evt-1", CALENDAR_ID) is expected
        mock_httpx_client.delete.assert_called_once_with(
            "/calendars/carlos%40school.edu/events/evt-1"
        )

    @pytest.mark.asyncio
    async def test_delete_event_network_error(self, client, mock_httpx_client):
        mock_httpx_client.delete = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client._client = mock_httpx_client

        assert await client.delete_event("evt-1", CALENDAR_ID) is False

    @pytest.mark.asyncio
    async def test_verify_access(self, client, mock_httpx_client):
        mock_httpx_client.get = AsyncMock(return_value=make_response(
            payload={"summary": "Carlos", "timeZone": "America/Bogota"}
        ))
        client._client = mock_httpx_client

        assert await client.verify_access(CALENDAR_ID) is True

    @pytest.mark.asyncio
    async def test_verify_access_denied(self, client, mock_httpx_client):
        mock_httpx_client.get = AsyncMock(return_value=make_response(403))
        client._client = mock_httpx_client

        assert await client.verify_access(CALENDAR_ID) is False

    @pytest.mark.asyncio
    async def test_close(self, client, mock_httpx_client):
        client._client = mock_httpx_client

        await client.close()

        mock_httpx_client.aclose.assert_called_once()
        assert client._client is None


def make_credentials(valid: bool, token=None, refreshed_token="fresh-token") -> MagicMock:
    """Mock service account credentials whose refresh swaps the token."""
    credentials = MagicMock()
    credentials.valid = valid
    credentials.token = token

    def refresh(_transport):
        credentials.token = refreshed_token
        credentials.valid = True

    credentials.refresh = MagicMock(side_effect=refresh)
    return credentials


class TestServiceAccountAuth:
    """Test bearer auth from service account credentials."""

    @pytest.fixture
    def request_(self):
        return httpx.Request("POST", "https://calendar.test/v3/freeBusy")

    @pytest.mark.asyncio
    async def test_refreshes_expired_token(self, request_):
        credentials = make_credentials(valid=False)
        flow = ServiceAccountAuth(credentials).async_auth_flow(request_)

        sent = await flow.__anext__()

        assert sent.headers["Authorization"] == "Bearer fresh-token"
        credentials.refresh.assert_called_once()
        with pytest.raises(StopAsyncIteration):
            await flow.asend(httpx.Response(200, request=sent))

    @pytest.mark.asyncio
    async def test_valid_token_reused(self, request_):
        credentials = make_credentials(valid=True, token="current-token")
        flow = ServiceAccountAuth(credentials).async_auth_flow(request_)

        sent = await flow.__anext__()

        assert sent.headers["Authorization"] == "Bearer current-token"
        credentials.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_unauthorized_retried_with_new_token(self, request_):
        credentials = make_credentials(valid=True, token="revoked-token")
        flow = ServiceAccountAuth(credentials).async_auth_flow(request_)

        sent = await flow.__anext__()
        retried = await flow.asend(httpx.Response(401, request=sent))

        assert retried.headers["Authorization"] == "Bearer fresh-token"
        credentials.refresh.assert_called_once()

    @pytest.mark.asyncio
    async def test_refresh_failure_is_request_error(self, request_):
        credentials = make_credentials(valid=False)
        credentials.refresh.side_effect = RefreshError("invalid_grant")
        flow = ServiceAccountAuth(credentials).async_auth_flow(request_)

        with pytest.raises(httpx.RequestError):
            await flow.__anext__()

    @pytest.mark.asyncio
    async def test_client_prefers_credentials(self):
        client = CalendarClient(
            base_url="https://calendar.test/v3",
            credentials=make_credentials(valid=False),
        )

        http = await client._get_client()

        assert client.token is None
        assert isinstance(http.auth, ServiceAccountAuth)
        assert "Authorization" not in http.headers
        await client.close()


class TestLoadCredentials:
    """Test service account loading from settings."""

    def test_inline_json(self):
        settings = MagicMock(
            google_service_account_json='{"type": "service_account"}',
            google_service_account_file="ignored.json",
        )

        with patch(FROM_INFO) as from_info:
            credentials = load_service_account_credentials(settings)

        assert credentials is from_info.return_value
        from_info.assert_called_once_with({"type": "service_account"}, scopes=CALENDAR_SCOPES)

    def test_key_file(self):
        settings = MagicMock(google_service_account_json=None, google_service_account_file="sa.json")

        with patch(FROM_FILE) as from_file:
            load_service_account_credentials(settings)

        from_file.assert_called_once_with("sa.json", scopes=CALENDAR_SCOPES)

    def test_not_configured(self):
        settings = MagicMock(google_service_account_json=None, google_service_account_file=None)

        assert load_service_account_credentials(settings) is None
