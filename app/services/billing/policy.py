"""Billing policy: what one interval costs and who pays for it."""
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Union

from app.services.call_session.models import CallSession

CENT_PRECISION = Decimal("0.0001")

Number = Union[Decimal, float, int, str]


def to_money(value: Number) -> Decimal:
    """Quantize a value to four decimal places."""
    return Decimal(str(value)).quantize(CENT_PRECISION, rounding=ROUND_HALF_UP)


def charge(interval_seconds: Number, rate_per_second: Number) -> Decimal:
    """Cost of one billing interval, rounded to four decimal places."""
    return to_money(Decimal(str(interval_seconds)) * Decimal(str(rate_per_second)))


def affordable_deduction(balance: Decimal, amount: Decimal) -> Decimal:
    """Largest deduction that keeps the balance at or above zero."""
    if balance <= 0:
        return Decimal("0")
    return to_money(min(balance, amount))


class BillingPolicy(ABC):
    """Decides which parties are billed for connected time."""

    name: str = ""

    @abstractmethod
    def billed_parties(self, session: CallSession) -> List[str]:
        """Return the user ids charged each interval."""
        pass


class SinglePayerPolicy(BillingPolicy):
    """Only the payer is charged."""

    name = "single_payer"

    def billed_parties(self, session: CallSession) -> List[str]:
        return [session.payer_id]


class SymmetricPolicy(BillingPolicy):
    """Every participant is charged the same interval cost."""

    name = "symmetric"

    def billed_parties(self, session: CallSession) -> List[str]:
        return list(session.participant_ids)


_POLICIES = {
    SinglePayerPolicy.name: SinglePayerPolicy,
    SymmetricPolicy.name: SymmetricPolicy,
}


def get_policy(name: str) -> BillingPolicy:
    """Look up a billing policy by its configured name."""
    try:
        return _POLICIES[name.strip().lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown billing policy '{name}'. Expected one of: {', '.join(sorted(_POLICIES))}"
        )
