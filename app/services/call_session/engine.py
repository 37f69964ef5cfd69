"""Call state machine and metered billing."""
import asyncio
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from app.core.config import Settings, settings as default_settings
from app.services.billing.policy import (
    BillingPolicy,
    affordable_deduction,
    charge,
    get_policy,
    to_money,
)
from app.services.call_session.clock import MeteringClock
from app.services.call_session.errors import (
    InsufficientBalanceError,
    InvalidTransitionError,
    NotACalleeError,
    ServiceUnavailableError,
    SessionNotFoundError,
)
from app.services.call_session.models import (
    CallSession,
    CallState,
    CallSummary,
    CallType,
    InitiateResult,
    SessionEvent,
    TerminationReason,
    utcnow,
)
from app.services.call_session.registry import SessionRegistry
from app.services.ledger.base import LedgerStore, LedgerUnavailableError
from app.services.signaling.base import NullRelay, SignalingRelay

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


class CallEngine:
    """Owns every transition of every call session.

    Transitions for one session run under that session's lock, so accept,
    end and billing ticks are totally ordered per session while different
    sessions proceed independently. Ledger reads and writes are the only
    awaited work inside a transition; notifications are fire-and-forget.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        relay: Optional[SignalingRelay] = None,
        registry: Optional[SessionRegistry] = None,
        clock: Optional[MeteringClock] = None,
        policy: Optional[BillingPolicy] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.ledger = ledger
        self.relay = relay or NullRelay()
        self.registry = registry or SessionRegistry()
        self.clock = clock or MeteringClock(config.billing_interval_seconds)
        self.policy = policy or get_policy(config.billing_policy)

        self.rate_per_second = Decimal(str(config.rate_per_second))
        self.interval_seconds = config.billing_interval_seconds
        self.interval_charge = charge(self.interval_seconds, self.rate_per_second)
        if self.interval_charge <= 0:
            raise ValueError(
                f"Billing interval of {self.interval_seconds}s at {self.rate_per_second}/s "
                f"rounds to a zero charge"
            )
        self.minimum_start_balance = to_money(config.minimum_start_balance)
        self.ring_timeout_seconds = config.ring_timeout_seconds
        self.max_consecutive_ledger_failures = config.max_consecutive_ledger_failures
        self.ledger_timeout_seconds = config.ledger_timeout_seconds
        self.low_balance_warning_intervals = config.low_balance_warning_intervals

        self._ring_timers: Dict[str, asyncio.Task] = {}
        self._ended: "OrderedDict[str, CallSummary]" = OrderedDict()
        self._ended_cache_size = config.ended_session_cache_size
        self._listeners: List[SessionListener] = []

    # Listeners

    def add_listener(self, listener: SessionListener) -> None:
        """Subscribe to session state changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Queries

    def get_session(self, session_id: str) -> Optional[CallSession]:
        """Get an active session."""
        return self.registry.get(session_id)

    def get_summary(self, session_id: str) -> Optional[CallSummary]:
        """Summary of an active or recently ended session."""
        session = self.registry.get(session_id)
        if session is not None:
            return session.to_summary()
        return self._ended.get(session_id)

    @property
    def active_count(self) -> int:
        return len(self.registry)

    # Transitions

    async def initiate(
        self,
        payer_id: str,
        callee_ids: Iterable[str],
        call_type: Union[CallType, str] = CallType.AUDIO,
    ) -> InitiateResult:
        """Start ringing the callees on behalf of the payer."""
        callees = [c for c in dict.fromkeys(callee_ids) if c]
        if not payer_id:
            raise ValueError("payer_id is required")
        if not callees:
            raise ValueError("At least one callee is required")
        if payer_id in callees:
            raise ValueError("A caller cannot call themselves")
        call_type = CallType(call_type)

        # Fail fast before touching the ledger; create() checks again below
        self.registry.ensure_available([payer_id, *callees])

        try:
            balance = await self._ledger_call(self.ledger.get_balance(payer_id))
        except LedgerUnavailableError as e:
            logger.error(f"[CALL ENGINE] Ledger unavailable during initiate for {payer_id}: {e}")
            raise ServiceUnavailableError() from e

        if balance < self.minimum_start_balance:
            logger.info(
                f"[CALL ENGINE] {payer_id} below minimum start balance "
                f"({balance} < {self.minimum_start_balance})"
            )
            raise InsufficientBalanceError(payer_id, balance, self.minimum_start_balance)

        session = self.registry.create(payer_id, callees, call_type)
        session_id = session.session_id
        self._ring_timers[session_id] = asyncio.create_task(self._ring_timeout(session_id))

        logger.info(
            f"[CALL ENGINE] {payer_id} calling {session.callee_ids} ({call_type}) - "
            f"session {session_id}, balance {balance}"
        )
        payload = session.to_payload()
        self.relay.notify(payer_id, "call:ringing", payload)
        for callee_id in session.callee_ids:
            self.relay.notify(callee_id, "call:incoming", payload)
        self._publish(session)

        if not any(self.relay.is_reachable(c) for c in session.callee_ids):
            logger.info(f"[CALL ENGINE] No callee reachable for {session_id}")
            await self.peer_unreachable(session_id)

        return InitiateResult(session_id=session_id, state=session.state)

    async def accept(self, session_id: str, user_id: Optional[str] = None) -> CallSession:
        """Connect a ringing call and start metering.

        When user_id is given it must be one of the invited callees.
        """
        session = self.registry.get(session_id)
        lock = self.registry.lock_for(session_id)
        if session is None or lock is None:
            raise SessionNotFoundError(session_id)
        if user_id is not None and user_id not in session.callee_ids:
            raise NotACalleeError(session_id, user_id)

        async with lock:
            if session.state != CallState.RINGING:
                raise InvalidTransitionError(session_id, session.state, "accept")
            self._cancel_ring_timer(session_id)
            session.connected_at = utcnow()
            session.state = CallState.CONNECTED
            self.clock.start(session_id, self.tick)

        logger.info(f"[CALL ENGINE] Session {session_id} connected")
        self._notify_all(session, "call:connected")
        self._publish(session)
        return session

    async def tick(self, session_id: str) -> None:
        """Bill one interval of connected time."""
        session = self.registry.get(session_id)
        lock = self.registry.lock_for(session_id)
        if session is None or lock is None:
            return

        async with lock:
            if session.state != CallState.CONNECTED:
                logger.debug(f"[CALL ENGINE] Tick for {session_id} in state {session.state}, ignoring")
                return
            await self._bill_interval(session)

    async def end(
        self,
        session_id: str,
        reason: Union[TerminationReason, str] = TerminationReason.USER_HANGUP,
    ) -> Optional[CallSummary]:
        """End a call. Repeated calls return the first outcome unchanged.

        Returns None for a session id that was never seen.
        """
        return await self._end(session_id, TerminationReason(reason))

    async def peer_unreachable(self, session_id: str) -> Optional[CallSummary]:
        """The relay could not locate the remote party."""
        return await self._end(session_id, TerminationReason.PEER_OFFLINE)

    async def participant_disconnected(self, user_id: str) -> Optional[CallSummary]:
        """End the active call of a user whose signaling channel went away."""
        session = self.registry.find_by_participant(user_id)
        if session is None:
            return None
        logger.info(f"[CALL ENGINE] {user_id} disconnected from session {session.session_id}")
        return await self._end(session.session_id, TerminationReason.DISCONNECT)

    async def shutdown(self) -> None:
        """End every active call and cancel all timers."""
        sessions = self.registry.active_sessions()
        if sessions:
            logger.info(f"[CALL ENGINE] Shutting down {len(sessions)} active session(s)")
        for session in sessions:
            await self._end(session.session_id, TerminationReason.DISCONNECT)
        self.clock.stop_all()
        for session_id in list(self._ring_timers):
            self._cancel_ring_timer(session_id)

    # Internals

    async def _end(
        self,
        session_id: str,
        reason: TerminationReason,
        only_from: Optional[CallState] = None,
    ) -> Optional[CallSummary]:
        session = self.registry.get(session_id)
        lock = self.registry.lock_for(session_id)
        if session is None or lock is None:
            summary = self._ended.get(session_id)
            if summary is None:
                logger.info(f"[CALL ENGINE] End requested for unknown session {session_id}, ignoring")
            return summary

        if only_from is not None and session.state != only_from:
            return None

        # Stop billing before waiting on the lock: no new tick may start after this
        self.clock.stop(session_id)
        self._cancel_ring_timer(session_id)

        async with lock:
            if session.state == CallState.ENDED:
                return self._ended.get(session_id)
            if only_from is not None and session.state != only_from:
                return None
            return self._finish(session, reason)

    def _finish(self, session: CallSession, reason: TerminationReason) -> CallSummary:
        """Move a session to ENDED. Caller must hold the session lock."""
        session_id = session.session_id
        self.clock.stop(session_id)
        self._cancel_ring_timer(session_id)

        session.ended_at = utcnow()
        session.termination_reason = reason
        session.state = CallState.ENDED
        summary = session.to_summary()
        self._remember(summary)

        logger.info(
            f"[CALL ENGINE] Session {session_id} ended ({reason}) - "
            f"duration {summary.duration_seconds}s, intervals {summary.billed_intervals}, "
            f"charged {summary.total_charged}"
        )
        self._notify_all(
            session,
            "call:ended",
            reason=reason.value,
            duration_seconds=summary.duration_seconds,
            total_charged=str(summary.total_charged),
        )
        self._publish(session, reason)
        self.registry.remove(session_id)
        return summary

    async def _bill_interval(self, session: CallSession) -> None:
        """Deduct one interval. Caller must hold the session lock."""
        session_id = session.session_id
        amount = self.interval_charge
        parties = self.policy.billed_parties(session)

        try:
            balances = {}
            for user_id in parties:
                balances[user_id] = await self._ledger_call(self.ledger.get_balance(user_id))
        except LedgerUnavailableError as e:
            self._record_ledger_failure(session, e)
            return

        short = [user_id for user_id in parties if balances[user_id] < amount]
        new_balances: Dict[str, Decimal] = {}
        charged_any = False
        for user_id in parties:
            if user_id in short:
                deduction = affordable_deduction(balances[user_id], amount)
            else:
                deduction = amount
            if deduction <= 0:
                new_balances[user_id] = balances[user_id]
                continue
            try:
                new_balances[user_id] = await self._ledger_call(
                    self.ledger.adjust_balance(
                        user_id,
                        -deduction,
                        kind="call_charge",
                        session_id=session_id,
                    )
                )
            except LedgerUnavailableError as e:
                if not charged_any:
                    self._record_ledger_failure(session, e)
                    return
                # Earlier parties already paid for this interval; it counts as billed
                logger.warning(
                    f"[CALL ENGINE] Could not charge {user_id} for an interval of "
                    f"{session_id}, interval kept for the others: {e}"
                )
                continue
            session.total_charged += deduction
            charged_any = True

        session.consecutive_ledger_failures = 0

        if short:
            logger.info(
                f"[CALL ENGINE] Low balance for {short} in session {session_id}, "
                f"charged remainder and ending"
            )
            self._finish(session, TerminationReason.LOW_BALANCE)
            return

        session.accumulated_chargeable += 1
        self._notify_all(
            session,
            "call:billing_update",
            billed_intervals=session.accumulated_chargeable,
            total_charged=str(session.total_charged),
        )
        self._maybe_warn_low_balance(session, new_balances.get(session.payer_id))

    async def _ledger_call(self, operation: Awaitable[Any]) -> Any:
        """Await a ledger operation, treating a stalled call as unavailable."""
        try:
            return await asyncio.wait_for(operation, timeout=self.ledger_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise LedgerUnavailableError(
                f"No response within {self.ledger_timeout_seconds}s"
            ) from e

    def _record_ledger_failure(self, session: CallSession, error: Exception) -> None:
        session.consecutive_ledger_failures += 1
        logger.warning(
            f"[CALL ENGINE] Ledger failure during tick for {session.session_id} "
            f"({session.consecutive_ledger_failures}/{self.max_consecutive_ledger_failures}): {error}"
        )
        if session.consecutive_ledger_failures >= self.max_consecutive_ledger_failures:
            logger.error(
                f"[CALL ENGINE] Too many consecutive ledger failures, ending {session.session_id}"
            )
            self._finish(session, TerminationReason.TIMEOUT)

    def _maybe_warn_low_balance(self, session: CallSession, balance: Optional[Decimal]) -> None:
        if balance is None or session.low_balance_warned:
            return
        threshold = self.interval_charge * self.low_balance_warning_intervals
        if balance >= threshold:
            return
        session.low_balance_warned = True
        intervals_left = int(balance // self.interval_charge)
        self.relay.notify(
            session.payer_id,
            "call:low_balance",
            {
                "session_id": session.session_id,
                "balance": str(balance),
                "seconds_remaining": int(intervals_left * self.interval_seconds),
            },
        )

    async def _ring_timeout(self, session_id: str) -> None:
        try:
            await asyncio.sleep(self.ring_timeout_seconds)
        except asyncio.CancelledError:
            return
        self._ring_timers.pop(session_id, None)
        logger.info(f"[CALL ENGINE] Session {session_id} not answered in {self.ring_timeout_seconds}s")
        await self._end(session_id, TerminationReason.TIMEOUT, only_from=CallState.RINGING)

    def _cancel_ring_timer(self, session_id: str) -> None:
        timer = self._ring_timers.pop(session_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    def _remember(self, summary: CallSummary) -> None:
        self._ended[summary.session_id] = summary
        while len(self._ended) > self._ended_cache_size:
            self._ended.popitem(last=False)

    def _notify_all(self, session: CallSession, event: str, **extra) -> None:
        payload = session.to_payload()
        payload.update(extra)
        for participant_id in session.participant_ids:
            self.relay.notify(participant_id, event, payload)

    def _publish(self, session: CallSession, reason: Optional[TerminationReason] = None) -> None:
        if not self._listeners:
            return
        event = SessionEvent(
            session_id=session.session_id,
            state=session.state,
            reason=reason,
            session=session.model_copy(deep=True),
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"[CALL ENGINE] Listener failed for {session.session_id}: {type(e).__name__}: {e}",
                    exc_info=True,
                )
