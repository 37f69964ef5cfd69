"""Unit tests for call record persistence."""
import pytest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from app.db.models import CallParticipant

from app.services.call_session.models import (
    CallSession,
    CallState,
    CallType,
    SessionEvent,
    TerminationReason,
    utcnow,
)
from app.services.persistence.calls import CallHistoryRecorder, CallPersistenceService


def ended_session(payer="alice", callees=("bob",), **overrides):
    """Build a session in its final state."""
    connected_at = utcnow() - timedelta(seconds=42)
    fields = dict(
        payer_id=payer,
        callee_ids=list(callees),
        participant_ids=[payer, *callees],
        call_type=CallType.VIDEO,
        state=CallState.ENDED,
        connected_at=connected_at,
        ended_at=connected_at + timedelta(seconds=42),
        accumulated_chargeable=42,
        total_charged=Decimal("0.1386"),
        termination_reason=TerminationReason.USER_HANGUP,
    )
    fields.update(overrides)
    return CallSession(**fields)


class TestCallPersistence:
    """Test call persistence service."""

    @pytest.mark.asyncio
    async def test_save_call(self, test_db):
        """Test writing the final state of a session."""
        service = CallPersistenceService(test_db)
        session = ended_session()

        record = await service.save_call(session)

        assert record.id is not None
        assert record.session_id == session.session_id
        assert record.payer_id == "alice"
        assert record.participant_ids == ["alice", "bob"]
        assert record.call_type == "video"
        assert record.termination_reason == "user_hangup"
        assert record.duration_seconds == 42
        assert record.billed_intervals == 42
        assert Decimal(str(record.total_charged)) == Decimal("0.1386")

    @pytest.mark.asyncio
    async def test_save_call_idempotent(self, test_db):
        """Test that saving the same session twice returns the existing record."""
        service = CallPersistenceService(test_db)
        session = ended_session()

        first = await service.save_call(session)
        second = await service.save_call(session)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_save_unanswered_call(self, test_db):
        """A call that never connected has zero duration."""
        service = CallPersistenceService(test_db)
        session = ended_session(
            connected_at=None,
            accumulated_chargeable=0,
            total_charged=Decimal("0"),
            termination_reason=TerminationReason.TIMEOUT,
        )

        record = await service.save_call(session)

        assert record.connected_at is None
        assert record.duration_seconds == 0
        assert record.termination_reason == "timeout"

    @pytest.mark.asyncio
    async def test_get_call_by_session_id(self, test_db):
        service = CallPersistenceService(test_db)
        session = ended_session()
        await service.save_call(session)

        retrieved = await service.get_call_by_session_id(session.session_id)

        assert retrieved is not None
        assert retrieved.session_id == session.session_id
        assert await service.get_call_by_session_id("missing") is None

    @pytest.mark.asyncio
    async def test_list_calls_for_participant(self, test_db):
        service = CallPersistenceService(test_db)
        await service.save_call(ended_session("alice", ("bob",)))
        await service.save_call(ended_session("carol", ("dave",)))
        await service.save_call(ended_session("dave", ("bob", "erin")))

        assert len(await service.list_calls()) == 3
        assert {r.payer_id for r in await service.list_calls(user_id="bob")} == {"alice", "dave"}
        assert [r.payer_id for r in await service.list_calls(user_id="carol")] == ["carol"]
        assert await service.list_calls(user_id="nobody") == []
        assert len(await service.list_calls(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_list_calls_limit_applies_to_the_users_calls(self, test_db):
        """A user's older call is found even when newer calls by others exceed the limit."""
        service = CallPersistenceService(test_db)
        base = utcnow() - timedelta(hours=1)
        await service.save_call(ended_session("alice", ("bob",), created_at=base))
        for minute in range(1, 6):
            await service.save_call(
                ended_session("carol", ("dave",), created_at=base + timedelta(minutes=minute))
            )

        records = await service.list_calls(user_id="bob", limit=1)

        assert [r.payer_id for r in records] == ["alice"]
        assert [r.payer_id for r in await service.list_calls(user_id="dave", limit=2)] == [
            "carol",
            "carol",
        ]

    @pytest.mark.asyncio
    async def test_save_call_indexes_participants(self, test_db):
        service = CallPersistenceService(test_db)
        session = ended_session("alice", ("bob", "erin"))

        await service.save_call(session)
        await service.save_call(session)

        result = await test_db.execute(
            select(CallParticipant.user_id).where(CallParticipant.session_id == session.session_id)
        )
        assert sorted(result.scalars().all()) == ["alice", "bob", "erin"]


class TestCallHistoryRecorder:
    """Test the engine listener that records ended calls."""

    @pytest.mark.asyncio
    async def test_records_ended_sessions_only(self, test_session_factory):
        recorder = CallHistoryRecorder(test_session_factory)
        session = ended_session()
        ringing = ended_session(state=CallState.RINGING, ended_at=None, termination_reason=None)

        recorder(SessionEvent(session_id=ringing.session_id, state=CallState.RINGING, session=ringing))
        recorder(
            SessionEvent(
                session_id=session.session_id,
                state=CallState.ENDED,
                reason=TerminationReason.USER_HANGUP,
                session=session,
            )
        )
        await recorder.drain()

        async with test_session_factory() as db:
            service = CallPersistenceService(db)
            assert await service.get_call_by_session_id(session.session_id) is not None
            assert await service.get_call_by_session_id(ringing.session_id) is None

    @pytest.mark.asyncio
    async def test_records_call_ended_by_engine(self, call_engine, test_session_factory):
        recorder = CallHistoryRecorder(test_session_factory)
        call_engine.add_listener(recorder)

        result = await call_engine.initiate("alice", ["bob"])
        await call_engine.accept(result.session_id)
        await call_engine.tick(result.session_id)
        await call_engine.end(result.session_id, "user_hangup")
        await recorder.drain()

        async with test_session_factory() as db:
            record = await CallPersistenceService(db).get_call_by_session_id(result.session_id)

        assert record is not None
        assert record.billed_intervals == 1
        assert record.termination_reason == "user_hangup"
        assert Decimal(str(record.total_charged)) == Decimal("0.0033")
