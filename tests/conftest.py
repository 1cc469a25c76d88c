"""
Shared fixtures for the signal engine tests.

Stores run against an in-memory SQLite database; every external
collaborator (channel, gateway, quotes, recommendation source) is an
in-memory fake that records what it was asked to do.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Optional, Sequence

import pytest

from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.entities import (
    ActionButton,
    BrokerOrderStatus,
    DeliveryPayload,
    DeliveryReceipt,
    Holding,
    OrderPlacement,
    OrderRequest,
    Portfolio,
    PortfolioContext,
    ProposedTrade,
    Side,
    Trigger,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import (
    ExecutionGateway,
    NotificationChannel,
    QuoteSource,
    RecommendationSource,
)
from signal_engine.infrastructure.signals.execution_order_repository import (
    ExecutionOrderRepositoryAdapter,
)
from signal_engine.infrastructure.signals.portfolio_repository import (
    PortfolioRepositoryAdapter,
)
from signal_engine.infrastructure.signals.signal_repository import (
    SignalRepositoryAdapter,
)
from signal_engine.infrastructure.signals.tables import build_db_engine, create_schema

# Monday 2026-03-02 09:30 IST
NOW = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(_seconds: float) -> None:
    return None


class FakeChannel(NotificationChannel):
    """Records deliveries, plain messages and handled buttons."""

    def __init__(self) -> None:
        self.delivered: list[tuple[str, DeliveryPayload]] = []
        self.texts: list[tuple[str, str, Optional[int], tuple[ActionButton, ...]]] = []
        self.handled: list[tuple[str, str, str]] = []
        self.fail_for: set[int] = set()
        self._ids = count(100)

    async def deliver(self, recipient: str, payload: DeliveryPayload) -> DeliveryReceipt:
        if payload.signal_id in self.fail_for:
            raise ExternalServiceError("telegram", "chat not found")
        self.delivered.append((recipient, payload))
        return DeliveryReceipt(message_ref=str(next(self._ids)))

    async def send_text(
        self,
        recipient: str,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> DeliveryReceipt:
        self.texts.append((recipient, text, signal_id, tuple(actions)))
        return DeliveryReceipt(message_ref=str(next(self._ids)))

    async def mark_handled(self, recipient: str, message_ref: str, label: str) -> None:
        self.handled.append((recipient, message_ref, label))


class FakeGateway(ExecutionGateway):
    """Broker double handing out ORD-1, ORD-2, ... order ids."""

    def __init__(self) -> None:
        self.placed: list[OrderRequest] = []
        self.statuses: dict[str, BrokerOrderStatus] = {}
        self.holdings: list[Holding] = []
        self.place_error: Optional[Exception] = None
        self.place_status = "open"
        self._ids = count(1)

    async def place_order(self, order: OrderRequest) -> OrderPlacement:
        if self.place_error is not None:
            raise self.place_error
        self.placed.append(order)
        return OrderPlacement(order_id=f"ORD-{next(self._ids)}", status=self.place_status)

    async def get_order_status(self, portfolio_id: int, order_id: str) -> BrokerOrderStatus:
        return self.statuses.get(order_id, BrokerOrderStatus(order_id, "open"))

    async def cancel_order(self, portfolio_id: int, order_id: str) -> None:
        self.statuses[order_id] = BrokerOrderStatus(order_id, "cancelled")

    async def get_holdings(self, portfolio_id: int) -> list[Holding]:
        return list(self.holdings)


class FakeQuotes(QuoteSource):
    def __init__(self, prices: Optional[dict[str, Decimal]] = None) -> None:
        self.prices = prices or {}

    async def get_last_price(self, symbol: str, exchange: str) -> Optional[Decimal]:
        return self.prices.get(symbol)


class FakeSource(RecommendationSource):
    """Returns a canned batch and remembers the contexts it was given."""

    def __init__(self, proposals: Optional[list[ProposedTrade]] = None) -> None:
        self.proposals = proposals or []
        self.contexts: list[PortfolioContext] = []
        self.error: Optional[Exception] = None

    async def propose(self, context: PortfolioContext) -> list[ProposedTrade]:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return list(self.proposals)


def proposal(
    symbol: str,
    side: Side = Side.BUY,
    quantity: int = 10,
    price: Optional[str] = None,
    confidence: int = 50,
) -> ProposedTrade:
    """Build a proposal; a price makes it a LIMIT, no price makes it at-market."""
    trigger = Trigger.limit(Decimal(price)) if price else Trigger.market()
    return ProposedTrade(
        symbol=symbol,
        side=side,
        quantity=quantity,
        trigger=trigger,
        confidence=confidence,
    )


# ══════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_engine():
    engine = build_db_engine("sqlite://")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def signal_repo(db_engine) -> SignalRepositoryAdapter:
    return SignalRepositoryAdapter(db_engine)


@pytest.fixture
def portfolio_repo(db_engine) -> PortfolioRepositoryAdapter:
    return PortfolioRepositoryAdapter(db_engine)


@pytest.fixture
def order_repo(db_engine) -> ExecutionOrderRepositoryAdapter:
    return ExecutionOrderRepositoryAdapter(db_engine)


@pytest.fixture
def ledger(portfolio_repo, signal_repo) -> CapitalLedger:
    return CapitalLedger(portfolio_repo, signal_repo)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def portfolio(portfolio_repo) -> Portfolio:
    """Connected portfolio with 10,000 cash and 20 INFY held."""
    p = Portfolio(
        id=1,
        name="Growth",
        available_cash=Decimal("10000"),
        recipient="chat-1",
        gateway_connected=True,
        holdings=[Holding("INFY", 20)],
    )
    portfolio_repo.save(p)
    return p
