"""Session registry: the authoritative map of calls that have not ended."""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from app.services.call_session.errors import DuplicateSessionError
from app.services.call_session.models import CallSession, CallType

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Active sessions keyed by session id, indexed by participant.

    Every method is synchronous, so on a single event loop create() checks
    and inserts without another coroutine running in between.
    """

    def __init__(self):
        self._sessions: Dict[str, CallSession] = {}
        self._by_participant: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def create(
        self,
        payer_id: str,
        participant_ids: Iterable[str],
        call_type: CallType = CallType.AUDIO,
    ) -> CallSession:
        """Register a new ringing session."""
        participants = [payer_id]
        for user_id in participant_ids:
            if user_id not in participants:
                participants.append(user_id)

        self.ensure_available(participants)

        session = CallSession(
            payer_id=payer_id,
            callee_ids=[p for p in participants if p != payer_id],
            participant_ids=participants,
            call_type=call_type,
        )
        self._sessions[session.session_id] = session
        self._locks[session.session_id] = asyncio.Lock()
        for user_id in participants:
            self._by_participant[user_id] = session.session_id

        logger.debug(
            f"[REGISTRY] Registered {session.session_id} for {participants} "
            f"({len(self._sessions)} active)"
        )
        return session

    def ensure_available(self, participant_ids: Iterable[str]) -> None:
        """Raise DuplicateSessionError if anyone is already in a call."""
        for user_id in participant_ids:
            existing = self._by_participant.get(user_id)
            if existing is not None:
                raise DuplicateSessionError(user_id, existing)

    def get(self, session_id: str) -> Optional[CallSession]:
        """Get an active session."""
        return self._sessions.get(session_id)

    def find_by_participant(self, user_id: str) -> Optional[CallSession]:
        """Get the active session a user is part of, as payer or callee."""
        session_id = self._by_participant.get(user_id)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def lock_for(self, session_id: str) -> Optional[asyncio.Lock]:
        """Per-session critical section shared by transitions and ticks."""
        return self._locks.get(session_id)

    def remove(self, session_id: str) -> None:
        """Drop a session. No-op if it is not registered."""
        session = self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        if session is None:
            return
        for user_id in session.participant_ids:
            if self._by_participant.get(user_id) == session_id:
                del self._by_participant[user_id]
        logger.debug(f"[REGISTRY] Removed {session_id} ({len(self._sessions)} active)")

    def active_sessions(self) -> List[CallSession]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()
        self._by_participant.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
