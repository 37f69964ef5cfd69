"""WebSocket signaling endpoint."""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.services.call_session.errors import CallError
from app.services.call_session.models import TerminationReason

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/{user_id}")
async def signaling_endpoint(websocket: WebSocket, user_id: str):
    """
    Signaling channel for one user.

    Server to client events: call:incoming, call:ringing, call:connected,
    call:low_balance, call:ended, call:error.

    Client to server messages (JSON):
        - {"type": "call:accept", "session_id": ...}
        - {"type": "call:reject", "session_id": ...}
        - {"type": "call:end", "session_id": ..., "reason": "user_hangup"}

    Closing the socket ends the user's active call with reason "disconnect".
    """
    engine = websocket.app.state.call_engine
    relay = websocket.app.state.relay

    # Reachable as soon as the client sees the handshake
    relay.connect(user_id, websocket)
    try:
        await websocket.accept()
        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError):
                # Not JSON, or a binary frame
                logger.warning(f"[SIGNALING] Malformed frame from {user_id}")
                relay.notify(user_id, "call:error", {"message": "Messages must be JSON objects"})
                continue
            await _handle_message(engine, relay, user_id, message)
    except WebSocketDisconnect:
        logger.debug(f"[SIGNALING] Socket closed by {user_id}")
    finally:
        if relay.disconnect(user_id, websocket):
            await engine.participant_disconnected(user_id)


async def _handle_message(engine, relay, user_id: str, message: dict) -> None:
    message_type = message.get("type") if isinstance(message, dict) else None
    session_id = message.get("session_id") if isinstance(message, dict) else None
    if not isinstance(message_type, str) or not isinstance(session_id, str) or not session_id:
        relay.notify(user_id, "call:error", {"message": "type and session_id are required"})
        return

    session = engine.get_session(session_id)
    if session is not None and user_id not in session.participant_ids:
        logger.warning(f"[SIGNALING] {user_id} is not part of session {session_id}")
        relay.notify(user_id, "call:error", {"session_id": session_id, "message": "Not a participant"})
        return

    try:
        if message_type == "call:accept":
            await engine.accept(session_id, user_id)
        elif message_type == "call:reject":
            await engine.end(session_id, TerminationReason.USER_HANGUP)
        elif message_type == "call:end":
            reason = message.get("reason") or TerminationReason.USER_HANGUP.value
            try:
                reason = TerminationReason(reason)
            except (ValueError, TypeError):
                reason = TerminationReason.USER_HANGUP
            await engine.end(session_id, reason)
        else:
            relay.notify(user_id, "call:error", {"message": f"Unknown message type '{message_type}'"})
    except CallError as e:
        relay.notify(
            user_id,
            "call:error",
            {"session_id": session_id, "code": e.code.value, "message": e.message},
        )
