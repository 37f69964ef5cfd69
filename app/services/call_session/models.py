"""Call session models."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallState(str, Enum):
    """Lifecycle states of a call session."""

    RINGING = "ringing"  # Waiting for a callee to accept
    CONNECTED = "connected"  # Billing accrues
    ENDED = "ended"  # Terminal

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value


class TerminationReason(str, Enum):
    """Why a call session ended."""

    USER_HANGUP = "user_hangup"
    LOW_BALANCE = "low_balance"
    TIMEOUT = "timeout"
    DISCONNECT = "disconnect"
    PEER_OFFLINE = "peer_offline"

    def __str__(self) -> str:
        return self.value


class CallType(str, Enum):
    """Media type requested by the caller."""

    AUDIO = "audio"
    VIDEO = "video"

    def __str__(self) -> str:
        return self.value


class CallSession(BaseModel):
    """One call attempt from initiation to termination."""

    session_id: str = Field(default_factory=lambda: uuid4().hex)
    payer_id: str
    callee_ids: List[str]
    participant_ids: List[str]
    call_type: CallType = CallType.AUDIO
    state: CallState = CallState.RINGING
    created_at: datetime = Field(default_factory=utcnow)
    connected_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    accumulated_chargeable: int = 0
    total_charged: Decimal = Decimal("0")
    termination_reason: Optional[TerminationReason] = None
    consecutive_ledger_failures: int = 0
    low_balance_warned: bool = False

    @property
    def is_active(self) -> bool:
        return self.state != CallState.ENDED

    def duration_seconds(self) -> int:
        """Connected time in whole seconds; zero if never connected."""
        if self.connected_at is None:
            return 0
        end = self.ended_at or utcnow()
        return max(0, int((end - self.connected_at).total_seconds()))

    def to_summary(self) -> "CallSummary":
        return CallSummary(
            session_id=self.session_id,
            state=self.state,
            termination_reason=self.termination_reason,
            duration_seconds=self.duration_seconds(),
            billed_intervals=self.accumulated_chargeable,
            total_charged=self.total_charged,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serializable view sent to participants over signaling."""
        return {
            "session_id": self.session_id,
            "payer_id": self.payer_id,
            "participant_ids": list(self.participant_ids),
            "call_type": self.call_type.value,
            "state": self.state.value,
        }


class CallSummary(BaseModel):
    """Outcome of a call returned by end()."""

    session_id: str
    state: CallState
    termination_reason: Optional[TerminationReason] = None
    duration_seconds: int = 0
    billed_intervals: int = 0
    total_charged: Decimal = Decimal("0")


class InitiateResult(BaseModel):
    """Returned by initiate()."""

    session_id: str
    state: CallState


class SessionEvent(BaseModel):
    """State change delivered to engine listeners."""

    session_id: str
    state: CallState
    reason: Optional[TerminationReason] = None
    session: CallSession
