"""Tests for the HTTP endpoints."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.core.scheduling.engine import EngineResponse
from app.core.scheduling.models import Session
from app.core.scheduling.state import DialogState
from app.infra.messaging import MessagingError
from app.main import app

CONTACT = "573001112233"


@pytest.fixture
def client():
    """Test client without the startup hooks (no database, Redis or dispatcher)."""
    return TestClient(app)


@pytest.fixture
def directory():
    mock = MagicMock()
    mock.is_blacklisted = AsyncMock(return_value=False)
    mock.add_to_blacklist = AsyncMock(return_value=True)
    mock.remove_from_blacklist = AsyncMock(return_value=0)
    with patch("app.api.routes.chat.get_directory", return_value=mock):
        yield mock


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.process = AsyncMock(return_value=EngineResponse(
        message="📚 *Sistema de Agendamiento de Citas*",
        contact_id=CONTACT,
        state=DialogState.COLLECTING_STUDENT_ID,
    ))
    mock.get_session = AsyncMock(return_value=Session(contact_id=CONTACT))
    mock.reset_session = AsyncMock()
    with patch("app.api.routes.chat.get_dialogue_engine", return_value=mock):
        yield mock


class TestChatEndpoint:
    """Test /chat."""

    def test_turn(self, client, directory, engine):
        response = client.post("/chat", json={"contact_id": CONTACT, "message": "agendar cita"})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "collecting_student_id"
        assert data["reply"].startswith("📚")
        assert data["ignored"] is False
        engine.process.assert_awaited_once_with(contact_id=CONTACT, message="agendar cita")

    def test_blacklisted_contact_ignored(self, client, directory, engine):
        directory.is_blacklisted.return_value = True

        response = client.post("/chat", json={"contact_id": CONTACT, "message": "hola"})

        assert response.status_code == 200
        assert response.json()["ignored"] is True
        assert response.json()["reply"] is None
        engine.process.assert_not_awaited()

    def test_empty_message_rejected(self, client, directory, engine):
        response = client.post("/chat", json={"contact_id": CONTACT, "message": ""})

        assert response.status_code == 422

    def test_engine_failure(self, client, directory, engine):
        engine.process.side_effect = RuntimeError("boom")

        response = client.post("/chat", json={"contact_id": CONTACT, "message": "hola"})

        assert response.status_code == 500

    def test_get_session(self, client, engine):
        response = client.get(f"/chat/session/{CONTACT}")

        assert response.status_code == 200
        assert response.json()["state"] == "idle"
        assert response.json()["message_count"] == 0

    def test_reset_session(self, client, engine):
        response = client.delete(f"/chat/session/{CONTACT}")

        assert response.status_code == 204
        engine.reset_session.assert_awaited_once_with(CONTACT)

    def test_blacklist_add(self, client, directory):
        response = client.post(
            "/chat/blacklist",
            json={"contact_id": CONTACT, "intent": "add", "reason": "spam"},
        )

        assert response.status_code == 200
        assert response.json()["changed"] is True
        directory.add_to_blacklist.assert_awaited_once_with(CONTACT, "spam")

    def test_blacklist_remove_nothing(self, client, directory):
        response = client.post("/chat/blacklist", json={"contact_id": CONTACT, "intent": "remove"})

        assert response.json()["changed"] is False

    def test_blacklist_bad_intent(self, client, directory):
        response = client.post("/chat/blacklist", json={"contact_id": CONTACT, "intent": "block"})

        assert response.status_code == 422


class TestMessagesEndpoint:
    """Test /messages."""

    @pytest.fixture
    def messenger(self):
        mock = MagicMock()
        mock.deliver = AsyncMock(return_value={"status": "queued"})
        with patch("app.api.routes.messages.get_outbound_messenger", return_value=mock):
            yield mock

    @pytest.fixture
    def queue(self):
        mock = MagicMock()
        mock.enqueue = AsyncMock(return_value=12)
        with patch("app.api.routes.messages.get_message_queue", return_value=mock):
            yield mock

    def test_send_now(self, client, messenger):
        response = client.post("/messages", json={"number": "+57 300 111 2233", "message": "Hola"})

        assert response.status_code == 200
        assert response.json() == {"status": "sent", "number": CONTACT}
        messenger.deliver.assert_awaited_once_with(CONTACT, "Hola", None)

    def test_send_gateway_failure(self, client, messenger):
        messenger.deliver.side_effect = MessagingError("HTTP 500")

        response = client.post("/messages", json={"number": CONTACT, "message": "Hola"})

        assert response.status_code == 502

    def test_schedule(self, client, queue):
        response = client.post("/messages/scheduled", json={
            "number": CONTACT,
            "message": "Recordatorio",
            "scheduled_at": " 24/10/2026 08:30 ",
        })

        assert response.status_code == 201
        assert response.json() == {"status": "queued", "id": 12}
        queue.enqueue.assert_awaited_once_with(
            destination=CONTACT,
            text="Recordatorio",
            scheduled_at="24/10/2026 08:30",
            media_url=None,
        )

    def test_schedule_bad_timestamp(self, client, queue):
        response = client.post("/messages/scheduled", json={
            "number": CONTACT,
            "message": "Recordatorio",
            "scheduled_at": "el viernes",
        })

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail[0]["loc"] == ["body", "scheduled_at"]
        assert "Unrecognized date/time" in detail[0]["msg"]
        queue.enqueue.assert_not_awaited()


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"
