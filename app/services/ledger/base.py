"""Ledger store interface."""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional


class LedgerUnavailableError(Exception):
    """Raised when the ledger cannot be read or written."""


class LedgerStore(ABC):
    """Abstract base class for per-user balance storage.

    Implementations must apply adjust_balance atomically at the storage
    layer. They return the signed result and never clamp; deciding how much
    may be deducted is the caller's job.
    """

    @abstractmethod
    async def get_balance(self, user_id: str) -> Decimal:
        """Get the current balance, zero for unknown users."""
        pass

    @abstractmethod
    async def adjust_balance(
        self,
        user_id: str,
        delta: Decimal,
        *,
        kind: str = "call_charge",
        session_id: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> Decimal:
        """Add delta (negative to deduct) and return the new balance."""
        pass
