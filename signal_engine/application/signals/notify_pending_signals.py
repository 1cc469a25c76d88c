"""
Use case: Deliver and re-deliver undecided signals.

Input:  none (reads the clock and the store)
Output: NotificationPassResult
Side effects: runs the expiry sweep, sends messages through the
notification channel, stamps last_notified_at / notify_count and returns
SNOOZED signals to PENDING.

A pass is cadence-agnostic and restartable: selection is a pure function of
stored state, so the job runner can call it at any interval.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from signal_engine.application.signals.dtos import NotificationPassResult
from signal_engine.application.signals.expire_signals import ExpirySweeper
from signal_engine.domain.signals.entities import (
    ActionButton,
    DeliveryPayload,
    Portfolio,
    Signal,
    UserAction,
)
from signal_engine.domain.signals.ports import (
    Clock,
    NotificationChannel,
    PortfolioRepository,
    SignalRepository,
    utc_now,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_RESEND_INTERVAL = timedelta(minutes=30)
DEFAULT_PACING_SECONDS = 0.3

EXECUTE_ACTIONS = (
    ActionButton("🚀 Execute", UserAction.EXECUTE),
    ActionButton("⏰ Snooze 30m", UserAction.SNOOZE),
    ActionButton("❌ Dismiss", UserAction.DISMISS),
)

ACK_ACTIONS = (
    ActionButton("✅ Acknowledge", UserAction.ACK),
    ActionButton("⏰ Snooze 30m", UserAction.SNOOZE),
    ActionButton("❌ Dismiss", UserAction.DISMISS),
)

RETRY_ACTIONS = (
    ActionButton("🔁 Retry", UserAction.EXECUTE),
    ActionButton("🔄 Retry as MARKET", UserAction.RETRY_MARKET),
    ActionButton("❌ Dismiss", UserAction.DISMISS),
)


def actions_for(portfolio: Portfolio) -> tuple[ActionButton, ...]:
    """Execute buttons need a live gateway session; otherwise offer ACK."""
    return EXECUTE_ACTIONS if portfolio.gateway_connected else ACK_ACTIONS


def build_payload(signal: Signal, portfolio: Portfolio) -> DeliveryPayload:
    return DeliveryPayload(
        signal_id=signal.id,
        portfolio_name=portfolio.name,
        symbol=signal.symbol,
        exchange=signal.exchange,
        side=signal.side,
        quantity=signal.quantity,
        trigger_description=signal.trigger.describe(),
        confidence=signal.confidence,
        rationale=signal.rationale,
        reminder_number=signal.notify_count + 1,
        actions=actions_for(portfolio),
    )


class NotificationScheduler:
    """Runs notification passes over PENDING and SNOOZED signals.

    Args:
        signal_repo: Signal store.
        portfolio_repo: Source of recipient and gateway status.
        channel: Outbound notification channel.
        sweeper: Expiry sweep run at the start of each pass.
        clock: Injectable time source.
        resend_interval: Minimum gap between two deliveries of a signal.
        pacing_seconds: Delay between consecutive deliveries.
        sleep: Awaitable used for pacing (tests pass a no-op).
    """

    def __init__(
        self,
        signal_repo: SignalRepository,
        portfolio_repo: PortfolioRepository,
        channel: NotificationChannel,
        sweeper: ExpirySweeper,
        clock: Clock = utc_now,
        resend_interval: timedelta = DEFAULT_RESEND_INTERVAL,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._signal_repo = signal_repo
        self._portfolio_repo = portfolio_repo
        self._channel = channel
        self._sweeper = sweeper
        self._clock = clock
        self._resend_interval = resend_interval
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep

    async def run_pass(self) -> NotificationPassResult:
        expired = self._sweeper.sweep()

        now = self._clock()
        due = self._signal_repo.find_due_for_delivery(now - self._resend_interval)
        portfolios: dict[int, Optional[Portfolio]] = {}
        delivered = skipped = failed = 0
        attempted = False

        for signal in due:
            if signal.portfolio_id not in portfolios:
                portfolios[signal.portfolio_id] = self._portfolio_repo.get(
                    signal.portfolio_id
                )
            portfolio = portfolios[signal.portfolio_id]
            if portfolio is None or not portfolio.recipient:
                skipped += 1
                logger.debug("Signal %s skipped: no recipient", signal.id)
                continue

            if attempted and self._pacing_seconds > 0:
                await self._sleep(self._pacing_seconds)
            attempted = True

            try:
                await self._channel.deliver(
                    portfolio.recipient, build_payload(signal, portfolio)
                )
            except Exception as exc:
                failed += 1
                logger.error("Failed to notify signal %s: %s", signal.id, exc)
                continue

            if self._signal_repo.record_delivery(signal.id, self._clock()):
                delivered += 1
            else:
                logger.info("Signal %s changed state during delivery", signal.id)

        result = NotificationPassResult(
            selected=len(due),
            delivered=delivered,
            skipped=skipped,
            failed=failed,
            expired=expired,
        )
        if due:
            logger.info(
                "Notification pass: %d/%d delivered (%d skipped, %d failed, %d expired)",
                delivered, len(due), skipped, failed, expired,
            )
        return result
