"""
Use case: Expire signals nobody acted on.

Input:  none (reads the clock)
Output: number of signals expired
Side effects: PENDING/SNOOZED signals older than the max age move to
EXPIRED with an EXPIRE audit record. Running it twice is harmless.
"""

import logging
from datetime import timedelta

from signal_engine.domain.signals.ports import Clock, SignalRepository, utc_now
from signal_engine.domain.signals.state_machine import SignalEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=24)


class ExpirySweeper:
    """Moves stale undecided signals to EXPIRED."""

    def __init__(
        self,
        signal_repo: SignalRepository,
        clock: Clock = utc_now,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> None:
        self._signal_repo = signal_repo
        self._clock = clock
        self._max_age = max_age

    def sweep(self) -> int:
        now = self._clock()
        stale = self._signal_repo.find_stale(now - self._max_age)
        expired = 0
        for signal in stale:
            updated = self._signal_repo.apply_event(
                signal.id,
                SignalEvent.EXPIRE,
                now,
                note=f"No action within {self._max_age}",
            )
            if updated is not None:
                expired += 1

        if expired:
            logger.info("Expired %d stale trade signals", expired)
        return expired
