"""FastAPI dependencies."""
from fastapi import Request

from app.services.call_session.engine import CallEngine
from app.services.ledger.sql import SqlLedgerStore


def get_call_engine(request: Request) -> CallEngine:
    """Get the call engine created at startup."""
    return request.app.state.call_engine


def get_ledger(request: Request) -> SqlLedgerStore:
    """Get the SQL ledger created at startup."""
    return request.app.state.ledger
