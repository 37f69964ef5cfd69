"""
Metering clock: one repeating timer per connected session.

Each tick runs as its own task. If the previous tick for a session is still
running when the next interval elapses, the new tick is skipped rather than
queued, so slow ledger I/O can never stack up charges.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[None]]


class MeteringClock:
    """Drive billing ticks for sessions at a fixed interval."""

    def __init__(self, interval_seconds: float = 1.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._skipped_count = 0
        self._failed_count = 0

    def start(self, session_id: str, on_tick: TickCallback) -> None:
        """Begin ticking for a session. Restarting a running session is a no-op."""
        if session_id in self._timers:
            logger.debug(f"[METERING] Clock already running for {session_id}")
            return
        timer = asyncio.create_task(self._run(session_id, on_tick))
        self._timers[session_id] = timer
        logger.debug(f"[METERING] Clock started for {session_id} every {self.interval_seconds}s")

    def stop(self, session_id: str) -> None:
        """Cancel the timer. Safe to call repeatedly.

        An in-flight tick is left to finish; once this returns no new tick
        will be started for the session.
        """
        timer = self._timers.pop(session_id, None)
        if timer is None:
            return
        timer.cancel()
        logger.debug(f"[METERING] Clock stopped for {session_id}")

    def stop_all(self) -> None:
        for session_id in list(self._timers):
            self.stop(session_id)

    def is_running(self, session_id: str) -> bool:
        return session_id in self._timers

    def in_flight(self, session_id: str) -> Optional[asyncio.Task]:
        """The tick task currently running for a session, if any."""
        task = self._in_flight.get(session_id)
        if task is not None and task.done():
            return None
        return task

    @property
    def active_count(self) -> int:
        return len(self._timers)

    @property
    def skipped_count(self) -> int:
        """Ticks dropped because the previous one had not finished."""
        return self._skipped_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    async def _run(self, session_id: str, on_tick: TickCallback) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                if self._timers.get(session_id) is not asyncio.current_task():
                    return

                if self.in_flight(session_id) is not None:
                    self._skipped_count += 1
                    logger.warning(
                        f"[METERING] Previous tick for {session_id} still running, skipping"
                    )
                    continue

                tick = asyncio.create_task(on_tick(session_id))
                self._in_flight[session_id] = tick
                tick.add_done_callback(lambda t: self._on_tick_complete(session_id, t))
        except asyncio.CancelledError:
            pass

    def _on_tick_complete(self, session_id: str, task: asyncio.Task) -> None:
        """Handle tick completion callback."""
        if self._in_flight.get(session_id) is task:
            del self._in_flight[session_id]

        if task.cancelled():
            logger.debug(f"[METERING] Tick for {session_id} was cancelled")
            return
        exc = task.exception()
        if exc:
            self._failed_count += 1
            logger.error(f"[METERING] Tick for {session_id} failed: {exc}", exc_info=exc)
