"""WebSocket implementation of the signaling relay."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Set

from fastapi import WebSocket

from app.services.signaling.base import SignalingRelay

logger = logging.getLogger(__name__)


class WebSocketRelay(SignalingRelay):
    """Tracks open sockets per user and pushes JSON events to them.

    A user may hold several sockets (tabs, devices); every one of them gets
    the event. Sends are scheduled as tasks so notify() never waits on a slow
    client.
    """

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._sent_count = 0
        self._failed_count = 0

    def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Register an accepted socket for a user."""
        self._connections.setdefault(user_id, set()).add(websocket)
        logger.info(
            f"[SIGNALING] {user_id} connected ({len(self._connections[user_id])} socket(s))"
        )

    def disconnect(self, user_id: str, websocket: WebSocket) -> bool:
        """Forget a socket. Returns True when the user has no sockets left."""
        sockets = self._connections.get(user_id)
        if not sockets:
            return True
        sockets.discard(websocket)
        if not sockets:
            del self._connections[user_id]
            logger.info(f"[SIGNALING] {user_id} disconnected")
            return True
        return False

    def is_reachable(self, participant_id: str) -> bool:
        return bool(self._connections.get(participant_id))

    @property
    def connected_users(self) -> int:
        return len(self._connections)

    @property
    def sent_count(self) -> int:
        return self._sent_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    def notify(self, participant_id: str, event: str, payload: Dict[str, Any]) -> None:
        sockets = self._connections.get(participant_id)
        if not sockets:
            logger.debug(f"[SIGNALING] Dropping '{event}' for offline user {participant_id}")
            return

        message = {
            "type": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[SIGNALING] No running loop, dropping '{event}' for {participant_id}")
            return

        for websocket in list(sockets):
            task = loop.create_task(self._send(participant_id, websocket, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _send(self, participant_id: str, websocket: WebSocket, message: Dict[str, Any]) -> None:
        try:
            await websocket.send_json(message)
            self._sent_count += 1
        except Exception as e:
            # Socket closed under us; the endpoint's disconnect handling cleans up
            self._failed_count += 1
            logger.debug(
                f"[SIGNALING] Send of '{message['type']}' to {participant_id} failed: "
                f"{type(e).__name__}: {e}"
            )

    async def close(self) -> None:
        """Wait briefly for in-flight sends."""
        if self._pending:
            await asyncio.wait(list(self._pending), timeout=1.0)
