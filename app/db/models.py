"""Database models."""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Wallet(Base):
    """Per-user balance record."""

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    balance = Column(Numeric(14, 4), default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class WalletTransaction(Base):
    """Signed balance movement. Rows are append-only."""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    kind = Column(String, nullable=False)  # call_charge, top_up, bonus
    amount = Column(Numeric(14, 4), nullable=False)
    balance_after = Column(Numeric(14, 4), nullable=False)
    session_id = Column(String, index=True, nullable=True)
    memo = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class CallRecord(Base):
    """Final outcome of one call session."""

    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, index=True, nullable=False)
    payer_id = Column(String, index=True, nullable=False)
    participant_ids = Column(JSON, nullable=False)  # List of user ids, payer included
    call_type = Column(String, default="audio", nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    connected_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    termination_reason = Column(String, nullable=True)
    duration_seconds = Column(Integer, default=0, nullable=False)
    billed_intervals = Column(Integer, default=0, nullable=False)
    total_charged = Column(Numeric(14, 4), default=0, nullable=False)


class CallParticipant(Base):
    """One row per user in a recorded call, for history lookups by user."""

    __tablename__ = "call_participants"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
