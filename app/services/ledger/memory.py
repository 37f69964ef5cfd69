"""In-memory ledger store."""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any

from app.services.billing.policy import to_money
from app.services.ledger.base import LedgerStore

logger = logging.getLogger(__name__)


class InMemoryLedgerStore(LedgerStore):
    """Ledger kept in a dict. Used for local runs and tests."""

    def __init__(self, balances: Optional[Dict[str, Any]] = None):
        self._balances: Dict[str, Decimal] = {
            user_id: to_money(amount) for user_id, amount in (balances or {}).items()
        }
        self.transactions: List[Dict[str, Any]] = []

    async def get_balance(self, user_id: str) -> Decimal:
        """Get the current balance."""
        return self._balances.get(user_id, Decimal("0.0000"))

    async def adjust_balance(
        self,
        user_id: str,
        delta: Decimal,
        *,
        kind: str = "call_charge",
        session_id: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> Decimal:
        """Apply delta without awaiting in between, which is atomic on one event loop."""
        delta = to_money(delta)
        new_balance = self._balances.get(user_id, Decimal("0.0000")) + delta
        self._balances[user_id] = new_balance
        self.transactions.append(
            {
                "user_id": user_id,
                "kind": kind,
                "amount": delta,
                "balance_after": new_balance,
                "session_id": session_id,
                "memo": memo,
            }
        )
        logger.debug(f"[LEDGER] {user_id} {delta:+} -> {new_balance}")
        return new_balance

    def deducted_for(self, session_id: str, user_id: Optional[str] = None) -> Decimal:
        """Total deducted for a session, optionally for one user."""
        total = Decimal("0")
        for tx in self.transactions:
            if tx["session_id"] != session_id or tx["amount"] >= 0:
                continue
            if user_id is not None and tx["user_id"] != user_id:
                continue
            total += -tx["amount"]
        return total
