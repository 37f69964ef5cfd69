"""Health check endpoint."""
import logging
from fastapi import APIRouter, Request

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus the number of calls currently ringing or connected."""
    engine = getattr(request.app.state, "call_engine", None)
    relay = getattr(request.app.state, "relay", None)
    active = engine.active_count if engine else 0
    logger.debug(f"[HEALTH] {active} active session(s)")
    return {
        "status": "healthy",
        "active_sessions": active,
        "connected_users": getattr(relay, "connected_users", 0),
    }
