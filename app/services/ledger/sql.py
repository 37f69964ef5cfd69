"""SQL-backed ledger store."""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Wallet, WalletTransaction
from app.services.billing.policy import to_money
from app.services.ledger.base import LedgerStore, LedgerUnavailableError

logger = logging.getLogger(__name__)


class SqlLedgerStore(LedgerStore):
    """Ledger backed by the wallets and wallet_transactions tables.

    Each call opens its own short session so that ticks for different calls
    never share a transaction.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_balance(self, user_id: str) -> Decimal:
        """Get the current balance, zero if the user has no wallet."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Wallet.balance).where(Wallet.user_id == user_id)
                )
                balance = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"[LEDGER] Balance read failed for {user_id}: {type(e).__name__}: {e}")
            raise LedgerUnavailableError(str(e)) from e
        return to_money(balance if balance is not None else 0)

    async def adjust_balance(
        self,
        user_id: str,
        delta: Decimal,
        *,
        kind: str = "call_charge",
        session_id: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> Decimal:
        """Atomically add delta and record the movement in one transaction."""
        delta = to_money(delta)
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        update(Wallet)
                        .where(Wallet.user_id == user_id)
                        .values(balance=Wallet.balance + delta)
                    )
                    if result.rowcount == 0:
                        db.add(Wallet(user_id=user_id, balance=delta))
                        await db.flush()

                    new_balance = to_money(
                        (
                            await db.execute(
                                select(Wallet.balance).where(Wallet.user_id == user_id)
                            )
                        ).scalar_one()
                    )
                    db.add(
                        WalletTransaction(
                            user_id=user_id,
                            kind=kind,
                            amount=delta,
                            balance_after=new_balance,
                            session_id=session_id,
                            memo=memo,
                        )
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                f"[LEDGER] Balance adjust failed for {user_id} (delta {delta}): "
                f"{type(e).__name__}: {e}"
            )
            raise LedgerUnavailableError(str(e)) from e

        logger.debug(f"[LEDGER] {user_id} {delta:+} -> {new_balance} ({kind})")
        return new_balance

    async def open_wallet(self, user_id: str, signup_bonus: Decimal) -> Tuple[Wallet, bool]:
        """Return the user's wallet, creating it with the signup bonus on first access."""
        bonus = to_money(signup_bonus)
        async with self.session_factory() as db:
            wallet = await self._get_wallet(db, user_id)
            if wallet:
                return wallet, False

            wallet = Wallet(user_id=user_id, balance=bonus)
            db.add(wallet)
            if bonus > 0:
                db.add(
                    WalletTransaction(
                        user_id=user_id,
                        kind="bonus",
                        amount=bonus,
                        balance_after=bonus,
                        memo="New user bonus",
                    )
                )
            try:
                await db.commit()
            except IntegrityError:
                # Opened concurrently by another request
                await db.rollback()
                wallet = await self._get_wallet(db, user_id)
                return wallet, False

            await db.refresh(wallet)
            logger.info(f"[LEDGER] Opened wallet for {user_id} with bonus {bonus}")
            return wallet, True

    async def list_transactions(self, user_id: str, limit: int = 50) -> List[WalletTransaction]:
        """Most recent balance movements for a user."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.user_id == user_id)
                .order_by(desc(WalletTransaction.id))
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _get_wallet(self, db: AsyncSession, user_id: str) -> Optional[Wallet]:
        result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one_or_none()
