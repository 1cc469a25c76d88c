"""
Domain service: Signal validation and capital allocation.

Turns a batch of proposed trades into persisted PENDING signals without
ever proposing more spend than the portfolio can cover.

BUY proposals are funded greedily in descending confidence order (stable
for ties): a proposal that fits is accepted unchanged, one that does not
fit is reduced to the largest affordable whole quantity, and one that
cannot afford a single unit is dropped. At-market proposals have no
reference price and bypass the budget. SELL proposals are clamped to the
quantity still held once earlier SELLs for the same symbol are counted.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, time
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.entities import (
    Portfolio,
    ProposedTrade,
    Side,
    Signal,
    SignalStatus,
)
from signal_engine.domain.signals.errors import PortfolioNotFoundError
from signal_engine.domain.signals.ports import PortfolioRepository, SignalRepository

logger = logging.getLogger(__name__)

DEFAULT_DAILY_SIGNAL_CAP = 3
DEFAULT_MAX_PROPOSALS = 5


@dataclass(frozen=True)
class DroppedProposal:
    """A proposal that did not become a signal, with the reason why."""

    proposal: ProposedTrade
    reason: str


@dataclass
class Allocation:
    """Outcome of allocating a batch against cash and holdings."""

    accepted: list[ProposedTrade] = field(default_factory=list)
    dropped: list[DroppedProposal] = field(default_factory=list)
    remaining_budget: Decimal = Decimal("0")

    @property
    def committed(self) -> Decimal:
        """Cash claimed by accepted priced BUY proposals."""
        return sum(
            (p.cost for p in self.accepted if p.side is Side.BUY),
            Decimal("0"),
        )


def normalize_proposal(proposal: ProposedTrade) -> ProposedTrade:
    """Clamp confidence to 0-100 and quantity to at least one unit."""
    confidence = min(100, max(0, int(proposal.confidence)))
    quantity = max(1, int(proposal.quantity))
    if confidence == proposal.confidence and quantity == proposal.quantity:
        return proposal
    return replace(proposal, confidence=confidence, quantity=quantity)


def allocate(
    proposals: Iterable[ProposedTrade],
    effective_cash: Decimal,
    holdings: Optional[dict[str, int]] = None,
) -> Allocation:
    """Allocate proposals against effective cash and held quantities.

    Args:
        proposals: Proposals in the order the recommendation source returned them.
        effective_cash: Budget available to BUY proposals.
        holdings: Sellable quantity per upper-case symbol, for SELL clamping.

    Returns:
        Accepted proposals (BUYs in funding order, then SELLs) and dropped ones.
    """
    sellable = dict(holdings or {})
    batch = list(proposals)
    result = Allocation()

    buys = [p for p in batch if p.side is Side.BUY]
    sells = [p for p in batch if p.side is Side.SELL]

    # sorted() is stable, so equal confidences keep their input order.
    budget = max(Decimal("0"), effective_cash)
    for proposal in sorted(buys, key=lambda p: -p.confidence):
        price = proposal.trigger.reference_price
        if price <= 0:
            result.accepted.append(proposal)
            continue

        cost = price * proposal.quantity
        if cost <= budget:
            result.accepted.append(proposal)
            budget -= cost
            logger.info(
                "BUY %s: %sx%s = %s approved (remaining %s)",
                proposal.symbol, proposal.quantity, price, cost, budget,
            )
        elif budget >= price:
            affordable = int((budget / price).to_integral_value(rounding=ROUND_FLOOR))
            reduced = replace(proposal, quantity=affordable)
            result.accepted.append(reduced)
            budget -= price * affordable
            logger.warning(
                "BUY %s: reduced %s -> %s (remaining %s)",
                proposal.symbol, proposal.quantity, affordable, budget,
            )
        else:
            result.dropped.append(
                DroppedProposal(proposal, f"needs {price} but only {budget} left")
            )
            logger.warning(
                "BUY %s: dropped, needs %s but only %s left",
                proposal.symbol, price, budget,
            )

    for proposal in sells:
        symbol = proposal.symbol.upper()
        held = sellable.get(symbol, 0)
        if held <= 0:
            result.dropped.append(DroppedProposal(proposal, "not in holdings"))
            logger.warning("SELL %s: dropped, not in holdings", proposal.symbol)
            continue
        if proposal.quantity > held:
            logger.warning(
                "SELL %s: reduced %s -> %s (max held)",
                proposal.symbol, proposal.quantity, held,
            )
            proposal = replace(proposal, quantity=held)
        sellable[symbol] = held - proposal.quantity
        result.accepted.append(proposal)

    result.remaining_budget = budget
    return result


class SignalValidator:
    """Decides which proposals become persisted PENDING signals."""

    def __init__(
        self,
        ledger: CapitalLedger,
        signal_repo: SignalRepository,
        portfolio_repo: PortfolioRepository,
        market_tz: ZoneInfo,
        daily_cap: int = DEFAULT_DAILY_SIGNAL_CAP,
        max_proposals: int = DEFAULT_MAX_PROPOSALS,
    ) -> None:
        self._ledger = ledger
        self._signal_repo = signal_repo
        self._portfolio_repo = portfolio_repo
        self._market_tz = market_tz
        self._daily_cap = daily_cap
        self._max_proposals = max_proposals

    def start_of_day(self, now: datetime) -> datetime:
        """Return midnight of now's calendar day in the market timezone."""
        local = now.astimezone(self._market_tz)
        return datetime.combine(local.date(), time.min, tzinfo=self._market_tz)

    def signals_today(self, portfolio_id: int, now: datetime) -> int:
        return self._signal_repo.count_created_since(
            portfolio_id,
            self.start_of_day(now),
            exclude=(SignalStatus.EXPIRED,),
        )

    def daily_cap_reached(self, portfolio_id: int, now: datetime) -> bool:
        return self.signals_today(portfolio_id, now) >= self._daily_cap

    def validate(
        self,
        portfolio_id: int,
        proposals: list[ProposedTrade],
        now: datetime,
    ) -> list[Signal]:
        """Allocate a batch and persist the accepted proposals.

        Args:
            portfolio_id: Portfolio the proposals are for.
            proposals: Proposals in recommendation-source order.
            now: Creation timestamp of the new signals.

        Returns:
            The created signals, in funding order.

        Raises:
            PortfolioNotFoundError: If the portfolio does not exist.
        """
        if not proposals:
            return []

        existing = self.signals_today(portfolio_id, now)
        if existing >= self._daily_cap:
            logger.info(
                "Portfolio %s already has %d signals today, rejecting batch of %d",
                portfolio_id, existing, len(proposals),
            )
            return []

        portfolio = self._portfolio_repo.get(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        batch = [normalize_proposal(p) for p in proposals[: self._max_proposals]]
        allocation = allocate(
            batch,
            self._ledger.effective_cash(portfolio_id),
            self._sellable(portfolio),
        )

        room = self._daily_cap - existing
        if len(allocation.accepted) > room:
            logger.info(
                "Portfolio %s: keeping %d of %d accepted proposals (daily cap %d)",
                portfolio_id, room, len(allocation.accepted), self._daily_cap,
            )
        created = [
            self._signal_repo.create(portfolio_id, proposal, now)
            for proposal in allocation.accepted[:room]
        ]
        logger.info(
            "Validated %d/%d proposals for portfolio %s",
            len(created), len(proposals), portfolio_id,
        )
        return created

    def _sellable(self, portfolio: Portfolio) -> dict[str, int]:
        """Held quantity per symbol minus what open SELL signals already claim."""
        sellable: dict[str, int] = {}
        for holding in portfolio.holdings:
            symbol = holding.symbol.upper()
            sellable[symbol] = sellable.get(symbol, 0) + holding.quantity
        for signal in self._signal_repo.list_open_sells(portfolio.id):
            symbol = signal.symbol.upper()
            sellable[symbol] = sellable.get(symbol, 0) - signal.quantity
        return sellable
