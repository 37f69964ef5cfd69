"""Wallet API endpoints."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.dependencies import get_ledger
from app.services.ledger.base import LedgerUnavailableError
from app.services.ledger.sql import SqlLedgerStore

router = APIRouter()
logger = logging.getLogger(__name__)


class WalletResponse(BaseModel):
    """Wallet response model."""
    user_id: str
    balance: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class TopUpRequest(BaseModel):
    """Manual credit request model."""
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=4)
    memo: Optional[str] = None


class TopUpResponse(BaseModel):
    """Manual credit response model."""
    user_id: str
    balance: Decimal


class TransactionResponse(BaseModel):
    """Wallet transaction response model."""
    id: int
    kind: str
    amount: Decimal
    balance_after: Decimal
    session_id: Optional[str] = None
    memo: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/api/wallet/{user_id}", response_model=WalletResponse)
async def get_wallet(user_id: str, ledger: SqlLedgerStore = Depends(get_ledger)):
    """Get a wallet, opening it with the signup bonus on first access."""
    wallet, created = await ledger.open_wallet(user_id, settings.wallet_signup_bonus)
    if created:
        logger.info(f"[WALLET] Opened wallet for {user_id}")
    return WalletResponse.model_validate(wallet)


@router.post("/api/wallet/{user_id}/top-up", response_model=TopUpResponse)
async def top_up_wallet(
    user_id: str,
    body: TopUpRequest,
    ledger: SqlLedgerStore = Depends(get_ledger),
):
    """Credit a wallet."""
    logger.info(f"[WALLET] Top-up - user: {user_id}, amount: {body.amount}")
    try:
        balance = await ledger.adjust_balance(user_id, body.amount, kind="top_up", memo=body.memo)
    except LedgerUnavailableError:
        raise HTTPException(status_code=503, detail="Wallet service unavailable")
    return TopUpResponse(user_id=user_id, balance=balance)


@router.get("/api/wallet/{user_id}/transactions", response_model=List[TransactionResponse])
async def get_transactions(
    user_id: str,
    limit: int = 50,
    ledger: SqlLedgerStore = Depends(get_ledger),
):
    """Get the most recent balance movements."""
    transactions = await ledger.list_transactions(user_id, limit=limit)
    return [TransactionResponse.model_validate(tx) for tx in transactions]
