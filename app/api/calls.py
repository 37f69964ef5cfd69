"""Call session API endpoints."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_call_engine
from app.db.database import get_db
from app.services.call_session.engine import CallEngine
from app.services.call_session.errors import (
    CallError,
    DuplicateSessionError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotACalleeError,
    ServiceUnavailableError,
    SessionNotFoundError,
)
from app.services.call_session.models import CallState, CallType, TerminationReason
from app.services.persistence.calls import CallPersistenceService

router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_CODES = {
    InsufficientBalanceError: 402,
    SessionNotFoundError: 404,
    DuplicateSessionError: 409,
    InvalidTransitionError: 409,
    NotACalleeError: 403,
    ServiceUnavailableError: 503,
}


def to_http_error(error: CallError) -> HTTPException:
    """Map a domain error onto an HTTP error with a user-safe body."""
    status_code = _STATUS_CODES.get(type(error), 400)
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code.value, "message": error.message},
    )


class InitiateCallRequest(BaseModel):
    """Initiate call request model."""
    payer_id: str = Field(..., min_length=1)
    callee_ids: List[str] = Field(..., min_length=1)
    call_type: CallType = CallType.AUDIO


class InitiateCallResponse(BaseModel):
    """Initiate call response model."""
    session_id: str
    state: CallState


class AcceptCallRequest(BaseModel):
    """Accept call request model."""
    user_id: Optional[str] = None


class EndCallRequest(BaseModel):
    """End call request model."""
    reason: TerminationReason = TerminationReason.USER_HANGUP


class EndCallResponse(BaseModel):
    """End call response model."""
    session_id: str
    duration_seconds: int = 0
    total_charged: Decimal = Decimal("0")
    termination_reason: Optional[TerminationReason] = None


class SessionResponse(BaseModel):
    """Live call session response model."""
    session_id: str
    payer_id: str
    participant_ids: List[str]
    call_type: CallType
    state: CallState
    created_at: datetime
    connected_at: Optional[datetime] = None
    accumulated_chargeable: int
    total_charged: Decimal

    class Config:
        from_attributes = True


class CallRecordResponse(BaseModel):
    """Call history response model."""
    session_id: str
    payer_id: str
    participant_ids: List[str]
    call_type: str
    created_at: datetime
    connected_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    termination_reason: Optional[str] = None
    duration_seconds: int
    billed_intervals: int
    total_charged: Decimal

    class Config:
        from_attributes = True


@router.post("/api/calls", response_model=InitiateCallResponse, status_code=201)
async def initiate_call(
    body: InitiateCallRequest,
    engine: CallEngine = Depends(get_call_engine),
):
    """Start a call; the payer is billed once a callee accepts."""
    logger.info(
        f"[CALLS API] Initiate - payer: {body.payer_id}, callees: {body.callee_ids}, "
        f"type: {body.call_type}"
    )
    try:
        result = await engine.initiate(body.payer_id, body.callee_ids, body.call_type)
    except CallError as e:
        logger.info(f"[CALLS API] Initiate rejected - payer: {body.payer_id}, {e}")
        raise to_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return InitiateCallResponse(session_id=result.session_id, state=result.state)


# Declared before /api/calls/{session_id} so "history" is not taken for an id
@router.get("/api/calls/history", response_model=List[CallRecordResponse])
async def get_call_history(
    request: Request,
    user_id: Optional[str] = None,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """Get ended calls, newest first."""
    logger.info(
        f"[CALLS API] History requested - user_id: {user_id}, limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    records = await CallPersistenceService(db).list_calls(user_id=user_id, limit=limit)
    return [CallRecordResponse.model_validate(record) for record in records]


@router.get("/api/calls/{session_id}", response_model=SessionResponse)
async def get_call(session_id: str, engine: CallEngine = Depends(get_call_engine)):
    """Get a live call session."""
    session = engine.get_session(session_id)
    if session is None:
        raise to_http_error(SessionNotFoundError(session_id))
    return SessionResponse.model_validate(session)


@router.post("/api/calls/{session_id}/accept")
async def accept_call(
    session_id: str,
    body: Optional[AcceptCallRequest] = None,
    engine: CallEngine = Depends(get_call_engine),
):
    """Accept a ringing call, optionally on behalf of a named callee."""
    user_id = body.user_id if body else None
    logger.info(f"[CALLS API] Accept - session: {session_id}, user: {user_id}")
    try:
        await engine.accept(session_id, user_id)
    except CallError as e:
        logger.info(f"[CALLS API] Accept rejected - session: {session_id}, {e}")
        raise to_http_error(e)
    return {}


@router.post("/api/calls/{session_id}/end", response_model=EndCallResponse)
async def end_call(
    session_id: str,
    body: Optional[EndCallRequest] = None,
    engine: CallEngine = Depends(get_call_engine),
):
    """End a call. Ending an unknown or already ended call is a no-op."""
    reason = body.reason if body else TerminationReason.USER_HANGUP
    logger.info(f"[CALLS API] End - session: {session_id}, reason: {reason}")
    summary = await engine.end(session_id, reason)
    if summary is None:
        return EndCallResponse(session_id=session_id)
    return EndCallResponse(
        session_id=session_id,
        duration_seconds=summary.duration_seconds,
        total_charged=summary.total_charged,
        termination_reason=summary.termination_reason,
    )
