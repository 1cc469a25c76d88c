"""
Use case: Check that recently executed BUY signals really filled.

Input:  a portfolio (or all active ones)
Output: VerificationResult with the unfilled symbols
Side effects: sends an advisory message to the portfolio's recipient when
executed BUY signals are missing from the broker's holdings. No signal is
mutated; the unfilled symbols are handed to the next generation run as
symbols to avoid.
"""

import logging
from datetime import timedelta

from signal_engine.application.signals.dtos import VerificationResult
from signal_engine.domain.signals.entities import Portfolio
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import (
    Clock,
    ExecutionGateway,
    NotificationChannel,
    PortfolioRepository,
    SignalRepository,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=3)


class ExecutedSignalVerifier:
    """Compares EXECUTED BUY signals against live holdings."""

    def __init__(
        self,
        signal_repo: SignalRepository,
        portfolio_repo: PortfolioRepository,
        gateway: ExecutionGateway,
        channel: NotificationChannel,
        clock: Clock = utc_now,
        lookback: timedelta = DEFAULT_LOOKBACK,
    ) -> None:
        self._signal_repo = signal_repo
        self._portfolio_repo = portfolio_repo
        self._gateway = gateway
        self._channel = channel
        self._clock = clock
        self._lookback = lookback

    async def verify_portfolio(self, portfolio: Portfolio) -> VerificationResult:
        if not portfolio.gateway_connected:
            return VerificationResult(portfolio.id)

        executed = self._signal_repo.find_executed_buys_since(
            portfolio.id, self._clock() - self._lookback
        )
        if not executed:
            return VerificationResult(portfolio.id)

        try:
            holdings = await self._gateway.get_holdings(portfolio.id)
        except ExternalServiceError as exc:
            logger.warning("Holdings check failed for portfolio %s: %s", portfolio.id, exc)
            return VerificationResult(portfolio.id, len(executed), error=exc.message)

        held = {h.symbol.upper() for h in holdings if h.quantity > 0}
        unfilled = tuple(
            dict.fromkeys(
                s.symbol.upper() for s in executed if s.symbol.upper() not in held
            )
        )
        if unfilled:
            names = ", ".join(unfilled)
            logger.info("Unfilled signals for portfolio %s: %s", portfolio.id, names)
            if portfolio.recipient:
                try:
                    await self._channel.send_text(
                        portfolio.recipient,
                        f"⚠️ *Unfilled Signals Detected*\n\nPrevious BUY signals for "
                        f"*{names}* were executed but are not in your holdings. "
                        "Please check your order history.",
                    )
                except Exception as exc:
                    logger.warning("Failed to send unfilled alert: %s", exc)

        return VerificationResult(portfolio.id, len(executed), unfilled)

    async def verify_all(self) -> list[VerificationResult]:
        return [
            await self.verify_portfolio(portfolio)
            for portfolio in self._portfolio_repo.list_active()
        ]
