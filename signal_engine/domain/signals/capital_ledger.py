"""
Domain service: Capital ledger.

Computes effective cash (raw cash minus reservations held by unsettled
BUY signals) and applies confirmed broker fills to raw cash.

Effective cash is recomputed on every call and never cached: reservations
change whenever any signal of the portfolio moves between states.
Applying a fill is idempotent per broker order id, so a webhook and a
polling sweep observing the same completion cannot double-count it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from signal_engine.domain.signals.entities import CashPosition, Fill, Side, Signal
from signal_engine.domain.signals.errors import PortfolioNotFoundError
from signal_engine.domain.signals.ports import PortfolioRepository, SignalRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapitalCheck:
    """Result of a pre-order capital check."""

    allowed: bool
    order_cost: Decimal
    available: Decimal
    reason: str


class CapitalLedger:
    """Reads effective cash and applies fills for a portfolio."""

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        signal_repo: SignalRepository,
    ) -> None:
        self._portfolio_repo = portfolio_repo
        self._signal_repo = signal_repo

    def cash_position(self, portfolio_id: int) -> CashPosition:
        """Return raw, reserved and effective cash for a portfolio.

        Raises:
            PortfolioNotFoundError: If the portfolio does not exist.
        """
        portfolio = self._portfolio_repo.get(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        reserved = sum(
            (s.reservation for s in self._signal_repo.list_reserving_buys(portfolio_id)),
            Decimal("0"),
        )
        position = CashPosition(
            portfolio_id=portfolio_id,
            raw_cash=portfolio.available_cash,
            reserved_cash=reserved,
        )
        logger.info(
            "Portfolio %s: raw=%s reserved=%s effective=%s",
            portfolio_id,
            position.raw_cash,
            position.reserved_cash,
            position.effective_cash,
        )
        return position

    def effective_cash(self, portfolio_id: int) -> Decimal:
        return self.cash_position(portfolio_id).effective_cash

    def apply_fill(self, fill: Fill, now: datetime) -> bool:
        """Apply a confirmed fill to raw cash exactly once.

        BUY fills decrement cash by filled_quantity x average_price,
        SELL fills increment it by the same amount.

        Returns:
            True if cash changed, False for ignored or already-applied fills.
        """
        if fill.filled_quantity <= 0 or fill.average_price <= 0:
            logger.warning(
                "Ignoring fill for order %s: qty=%s price=%s",
                fill.order_id,
                fill.filled_quantity,
                fill.average_price,
            )
            return False

        delta = -fill.amount if fill.side is Side.BUY else fill.amount
        applied = self._portfolio_repo.apply_cash_delta(
            fill.portfolio_id, fill.order_id, delta, now
        )
        if applied:
            logger.info(
                "Cash %s by %s for %s order %s (portfolio %s)",
                "decremented" if fill.side is Side.BUY else "incremented",
                fill.amount,
                fill.side.value,
                fill.order_id,
                fill.portfolio_id,
            )
        else:
            logger.info("Fill for order %s already applied, skipping", fill.order_id)
        return applied

    def pre_order_check(
        self, signal: Signal, estimated_price: Decimal
    ) -> CapitalCheck:
        """Gate an order before it reaches the gateway.

        The signal's own reservation is added back to effective cash so
        that its claim is not counted twice.
        """
        if signal.side is Side.SELL:
            return CapitalCheck(True, Decimal("0"), Decimal("0"), "SELL orders do not consume cash")

        order_cost = estimated_price * signal.quantity
        available = self.effective_cash(signal.portfolio_id) + signal.reservation
        if order_cost <= available:
            return CapitalCheck(True, order_cost, available, "Within capital limits")

        logger.warning(
            "Pre-order check failed for signal %s: cost=%s available=%s",
            signal.id,
            order_cost,
            available,
        )
        return CapitalCheck(
            False,
            order_cost,
            available,
            f"Order cost ₹{order_cost} exceeds available cash ₹{available}",
        )
