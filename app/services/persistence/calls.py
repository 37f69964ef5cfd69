"""Call record persistence service."""
import asyncio
import logging
from typing import List, Optional, Set

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import CallParticipant, CallRecord
from app.services.call_session.models import CallSession, CallState, SessionEvent

logger = logging.getLogger(__name__)


class CallPersistenceService:
    """Service for persisting call records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_call(self, session: CallSession) -> CallRecord:
        """Write the final state of a session, or return the existing record."""
        existing = await self.get_call_by_session_id(session.session_id)
        if existing:
            return existing

        record = CallRecord(
            session_id=session.session_id,
            payer_id=session.payer_id,
            participant_ids=list(session.participant_ids),
            call_type=session.call_type.value,
            created_at=session.created_at,
            connected_at=session.connected_at,
            ended_at=session.ended_at,
            termination_reason=(
                session.termination_reason.value if session.termination_reason else None
            ),
            duration_seconds=session.duration_seconds(),
            billed_intervals=session.accumulated_chargeable,
            total_charged=session.total_charged,
        )
        self.db.add(record)
        self.db.add_all([
            CallParticipant(session_id=session.session_id, user_id=user_id)
            for user_id in session.participant_ids
        ])
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get_call_by_session_id(self, session_id: str) -> Optional[CallRecord]:
        """Get a call record by session id."""
        result = await self.db.execute(
            select(CallRecord).where(CallRecord.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def list_calls(self, user_id: Optional[str] = None, limit: int = 100) -> List[CallRecord]:
        """Most recent calls, optionally only those a user took part in."""
        query = select(CallRecord)
        if user_id is not None:
            query = query.join(
                CallParticipant, CallParticipant.session_id == CallRecord.session_id
            ).where(CallParticipant.user_id == user_id)
        result = await self.db.execute(
            query.order_by(desc(CallRecord.created_at)).limit(limit)
        )
        return list(result.scalars().all())


class CallHistoryRecorder:
    """Engine listener that writes one call record per ended session.

    Writes run as background tasks so a slow database never holds up a
    state transition.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def __call__(self, event: SessionEvent) -> None:
        if event.state != CallState.ENDED:
            return
        task = asyncio.get_running_loop().create_task(self._write(event.session))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, session: CallSession) -> None:
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).save_call(session)
            logger.debug(f"[CALL HISTORY] Recorded session {session.session_id}")
        except SQLAlchemyError as e:
            logger.error(
                f"[CALL HISTORY] Failed to record session {session.session_id}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for pending writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
