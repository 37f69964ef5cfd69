"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.database import AsyncSessionLocal, init_db
from app.api import calls, health, signaling, wallet
from app.services.call_session.engine import CallEngine
from app.services.ledger.sql import SqlLedgerStore
from app.services.persistence.calls import CallHistoryRecorder
from app.services.signaling.websocket_relay import WebSocketRelay

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()

    ledger = SqlLedgerStore(AsyncSessionLocal)
    relay = WebSocketRelay()
    engine = CallEngine(ledger=ledger, relay=relay, config=settings)
    recorder = CallHistoryRecorder(AsyncSessionLocal)
    engine.add_listener(recorder)

    app.state.ledger = ledger
    app.state.relay = relay
    app.state.call_engine = engine
    logger.info(
        f"[STARTUP] Call engine ready - rate {engine.rate_per_second}/s, "
        f"interval {engine.interval_seconds}s, policy {engine.policy.name}"
    )
    yield
    # Shutdown
    await engine.shutdown()
    await recorder.drain()
    await relay.close()


app = FastAPI(
    title="Metered Calling Service",
    description="Call session lifecycle and pay-per-second billing",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(calls.router, tags=["calls"])
app.include_router(wallet.router, tags=["wallet"])
app.include_router(signaling.router, tags=["signaling"])


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "Metered Calling Service API",
        "version": "0.1.0",
    }
