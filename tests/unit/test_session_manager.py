"""Tests for session management."""

import pytest
from unittest.mock import AsyncMock, patch
from datetime import date, datetime

from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.scheduling.models import (
    Appointment,
    AppointmentDraft,
    AvailableDate,
    CancellationDraft,
    FormFieldSpec,
    ProviderRef,
    Session,
)
from app.core.scheduling.session import SessionManager
from app.core.scheduling.state import (
    DialogState,
    can_transition,
)

from tests.unit.conftest import BOGOTA

GET_REDIS = "app.core.scheduling.session.get_redis"


class TestSessionManager:
    """Test Redis session management."""

    @pytest.fixture
    def mock_redis(self):
        """Create mock Redis client."""
        mock = AsyncMock()
        mock.get = AsyncMock(return_value=None)
        mock.setex = AsyncMock()
        mock.delete = AsyncMock(return_value=1)
        return mock

    @pytest.fixture
    def manager(self):
        """Create session manager."""
        return SessionManager(ttl=86400, max_history=4)

    @pytest.mark.asyncio
    async def test_get_new_session(self, manager, mock_redis):
        """Unknown contacts start idle."""
        with patch(GET_REDIS, return_value=mock_redis):
            session = await manager.get("573001112233")

            assert session.contact_id == "573001112233"
            assert session.state == DialogState.IDLE
            assert session.max_history == 4
            mock_redis.get.assert_called_once_with("appointments:v1:session:573001112233")

    @pytest.mark.asyncio
    async def test_get_existing(self, manager, mock_redis):
        """Test loading a stored session."""
        stored = Session(contact_id="573001112233", state=DialogState.COLLECTING_DATE)
        stored.draft.student_id = "1001"
        mock_redis.get = AsyncMock(return_value=stored.to_json())

        with patch(GET_REDIS, return_value=mock_redis):
            session = await manager.get("573001112233")

            assert session.state == DialogState.COLLECTING_DATE
            assert session.draft.student_id == "1001"

    @pytest.mark.asyncio
    async def test_save_sets_ttl(self, manager, mock_redis):
        session = Session(contact_id="573001112233")

        with patch(GET_REDIS, return_value=mock_redis):
            stored = await manager.save(session)

            assert stored is True
            key, ttl, payload = mock_redis.setex.call_args.args
            assert key == "appointments:v1:session:573001112233"
            assert ttl == 86400
            assert Session.from_json(payload).contact_id == "573001112233"

    @pytest.mark.asyncio
    async def test_fallback_without_redis(self, manager):
        """Sessions survive in memory when Redis is unavailable."""
        with patch(GET_REDIS, return_value=None):
            session = Session(contact_id="573001112233", state=DialogState.COLLECTING_TEACHER)

            stored = await manager.save(session)
            loaded = await manager.get("573001112233")

            assert stored is False
            assert "573001112233" in manager._in_memory_fallback
            assert loaded.state == DialogState.COLLECTING_TEACHER

    @pytest.mark.asyncio
    async def test_redis_error_falls_back(self, manager, mock_redis):
        mock_redis.setex = AsyncMock(side_effect=RedisConnectionError("down"))
        mock_redis.get = AsyncMock(side_effect=RedisConnectionError("down"))

        with patch(GET_REDIS, return_value=mock_redis), \
                patch("app.core.scheduling.session.RedisClient.mark_disconnected") as mark:
            session = Session(contact_id="573001112233", state=DialogState.COLLECTING_TIME)

            stored = await manager.save(session)
            loaded = await manager.get("573001112233")

            assert stored is False
            assert loaded.state == DialogState.COLLECTING_TIME
            assert mark.call_count == 2

    @pytest.mark.asyncio
    async def test_reset_keeps_history(self, manager):
        with patch(GET_REDIS, return_value=None):
            session = Session(contact_id="573001112233", state=DialogState.COLLECTING_DATE)
            session.add_message("user", "agendar cita")
            await manager.save(session)

            reset = await manager.reset("573001112233")

            assert reset.state == DialogState.IDLE
            assert reset.draft == AppointmentDraft()
            assert reset.history == [{"role": "user", "content": "agendar cita"}]

    @pytest.mark.asyncio
    async def test_delete_session(self, manager, mock_redis):
        with patch(GET_REDIS, return_value=mock_redis):
            deleted = await manager.delete("573001112233")

            assert deleted is True
            mock_redis.delete.assert_called_once_with("appointments:v1:session:573001112233")

    @pytest.mark.asyncio
    async def test_delete_missing(self, manager, mock_redis):
        mock_redis.delete = AsyncMock(return_value=0)

        with patch(GET_REDIS, return_value=mock_redis):
            assert await manager.delete("573001112233") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        '{"contact_id": "573001112233", "state": "confirming_appointment"}',
        '{"state": "idle"}',
        '{"contact_id": "573001112233", "draft": "collecting"}',
        "not json",
    ])
    async def test_unreadable_session_starts_fresh(self, manager, mock_redis, payload):
        mock_redis.get = AsyncMock(return_value=payload)

        with patch(GET_REDIS, return_value=mock_redis):
            session = await manager.get("573001112233")

            assert session.contact_id == "573001112233"
            assert session.state == DialogState.IDLE
            assert session.history == []

    @pytest.mark.asyncio
    async def test_engine_replaces_unreadable_session(self, engine, manager, mock_redis):
        """A stored session from an older release does not break the next turn."""
        mock_redis.get = AsyncMock(
            return_value='{"contact_id": "573001112233", "state": "confirming_appointment"}'
        )
        engine._sessions = manager

        with patch(GET_REDIS, return_value=mock_redis):
            response = await engine.process("573001112233", "hola")

            assert response.state == DialogState.IDLE
            assert response.message
            _, _, payload = mock_redis.setex.call_args.args
            assert Session.from_json(payload).state == DialogState.IDLE


class TestSession:
    """Test Session model."""

    def test_serialization_roundtrip(self):
        session = Session(
            contact_id="573001112233",
            state=DialogState.COLLECTING_FORM_FIELD,
            last_activity=datetime(2026, 10, 19, 9, 0, tzinfo=BOGOTA),
        )
        session.draft = AppointmentDraft(
            student_id="1001",
            student_name="Ana Pérez",
            providers=[ProviderRef("Carlos Ruiz", "Matemáticas")],
            teacher_name="Carlos Ruiz",
            available_dates=[AvailableDate(date(2026, 10, 21), "miércoles 21 Oct", "miércoles")],
            selected_date=date(2026, 10, 21),
            available_slots=["14:00", "14:30"],
            time="14:30",
            duration_minutes=30,
            form_fields=[FormFieldSpec("nombre", "¿Nombre?")],
            collected_fields={"nombre": "María"},
            attempts=1,
        )
        session.cancellation = CancellationDraft(
            student_id="1001",
            appointments=[
                Appointment(
                    id=3,
                    contact_id="573001112233",
                    student_name="Ana Pérez",
                    student_id="1001",
                    provider_label="Carlos Ruiz (Matemáticas)",
                    date="2026-10-21",
                    time="14:00",
                )
            ],
        )

        restored = Session.from_json(session.to_json())

        assert restored.state == DialogState.COLLECTING_FORM_FIELD
        assert restored.draft == session.draft
        assert restored.cancellation == session.cancellation
        assert restored.last_activity == session.last_activity

    def test_reset_clears_drafts(self):
        session = Session(contact_id="573001112233", state=DialogState.AWAITING_CANCEL_ID)
        session.cancellation.student_id = "1001"
        session.touch(datetime(2026, 10, 19, 9, 0, tzinfo=BOGOTA))

        session.reset()

        assert session.is_idle
        assert session.cancellation == CancellationDraft()
        assert session.last_activity is None

    def test_max_history_limit(self):
        session = Session(contact_id="573001112233", max_history=3)

        for i in range(5):
            session.add_message("user", f"m{i}")

        assert [m["content"] for m in session.history] == ["m2", "m3", "m4"]


class TestDialogState:
    """Test state transition rules."""

    def test_transitions_from_idle(self):
        assert can_transition(DialogState.IDLE, DialogState.COLLECTING_STUDENT_ID)
        assert can_transition(DialogState.IDLE, DialogState.AWAITING_CANCEL_ID)
        assert not can_transition(DialogState.IDLE, DialogState.COLLECTING_TIME)

    def test_idle_always_reachable(self):
        for state in DialogState:
            assert can_transition(state, DialogState.IDLE)

    def test_booking_flow(self):
        flow = [
            DialogState.IDLE,
            DialogState.COLLECTING_STUDENT_ID,
            DialogState.COLLECTING_TEACHER,
            DialogState.COLLECTING_MODALITY,
            DialogState.COLLECTING_DATE,
            DialogState.COLLECTING_TIME,
            DialogState.COLLECTING_FORM_FIELD,
        ]
        for current, following in zip(flow, flow[1:]):
            assert can_transition(current, following)

    def test_teacher_can_skip_modality(self):
        assert can_transition(DialogState.COLLECTING_TEACHER, DialogState.COLLECTING_DATE)
