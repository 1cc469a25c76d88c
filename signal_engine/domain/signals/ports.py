"""
Port interfaces (ABCs) for the signals bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.

Store ports are synchronous (short single-row transactions). Ports that
cross the network are async so that callers yield while they wait.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from signal_engine.domain.signals.entities import (
    ActionButton,
    BrokerOrderStatus,
    DeliveryPayload,
    DeliveryReceipt,
    ExecutionOrder,
    Holding,
    OrderPlacement,
    OrderRequest,
    Portfolio,
    PortfolioContext,
    ProposedTrade,
    Signal,
    SignalAction,
    SignalStatus,
)
from signal_engine.domain.signals.state_machine import SignalEvent

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SignalRepository(ABC):
    """Port for the durable record of signals and their audit trail."""

    @abstractmethod
    def create(
        self, portfolio_id: int, proposal: ProposedTrade, created_at: datetime
    ) -> Signal:
        """Persist an accepted proposal as a new PENDING signal."""
        raise NotImplementedError

    @abstractmethod
    def get(self, signal_id: int) -> Optional[Signal]:
        """Return a signal by id, or None if it does not exist."""
        raise NotImplementedError

    @abstractmethod
    def list_for_portfolio(
        self,
        portfolio_id: int,
        status: Optional[SignalStatus] = None,
        limit: int = 50,
    ) -> list[Signal]:
        """Return a portfolio's signals, newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_reserving_buys(self, portfolio_id: int) -> list[Signal]:
        """Return BUY signals of a portfolio currently in a reserving state."""
        raise NotImplementedError

    @abstractmethod
    def list_open_sells(self, portfolio_id: int) -> list[Signal]:
        """Return SELL signals of a portfolio not yet executed, dismissed or expired."""
        raise NotImplementedError

    @abstractmethod
    def count_created_since(
        self,
        portfolio_id: int,
        since: datetime,
        exclude: Sequence[SignalStatus] = (),
    ) -> int:
        """Count signals created at or after since, ignoring excluded statuses."""
        raise NotImplementedError

    @abstractmethod
    def find_due_for_delivery(self, notified_before: datetime) -> list[Signal]:
        """Return PENDING/SNOOZED signals never notified or last notified before the cutoff.

        Ordered by creation time, then id.
        """
        raise NotImplementedError

    @abstractmethod
    def find_stale(self, created_before: datetime) -> list[Signal]:
        """Return PENDING/SNOOZED signals created before the cutoff."""
        raise NotImplementedError

    @abstractmethod
    def find_placing_before(self, updated_before: datetime) -> list[Signal]:
        """Return PLACING signals whose last transition is older than the cutoff."""
        raise NotImplementedError

    @abstractmethod
    def find_executed_buys_since(
        self, portfolio_id: int, since: datetime
    ) -> list[Signal]:
        """Return EXECUTED BUY signals of a portfolio created since the cutoff."""
        raise NotImplementedError

    @abstractmethod
    def apply_event(
        self,
        signal_id: int,
        event: SignalEvent,
        now: datetime,
        note: Optional[str] = None,
        order_id: Optional[str] = None,
        expected_order_id: Optional[str] = None,
    ) -> Optional[Signal]:
        """Atomically transition a signal if it is still in an accepted source state.

        Writes the matching audit record in the same transaction.

        Args:
            signal_id: Signal to transition.
            event: State machine event to apply.
            now: Transition timestamp.
            note: Free text stored on the audit record.
            order_id: Order link to store (PLACED only).
            expected_order_id: When set, the update only applies while the
                signal is still linked to this order.

        Returns:
            The updated signal, or None when the conditional update matched
            nothing (the signal moved on or the link changed).
        """
        raise NotImplementedError

    @abstractmethod
    def record_delivery(self, signal_id: int, now: datetime) -> bool:
        """Mark a successful delivery: stamp last_notified_at, bump notify_count,
        and return a SNOOZED signal to PENDING.

        Returns:
            False when the signal is no longer PENDING/SNOOZED.
        """
        raise NotImplementedError

    @abstractmethod
    def update_quantity(self, signal_id: int, quantity: int, now: datetime) -> None:
        """Overwrite the quantity after a partial fill."""
        raise NotImplementedError

    @abstractmethod
    def list_actions(self, signal_id: int) -> list[SignalAction]:
        """Return the audit trail of a signal, oldest first."""
        raise NotImplementedError


class PortfolioRepository(ABC):
    """Port for reading portfolios and mutating raw cash."""

    @abstractmethod
    def get(self, portfolio_id: int) -> Optional[Portfolio]:
        """Return a portfolio with its holdings, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def list_active(self) -> list[Portfolio]:
        """Return all active portfolios."""
        raise NotImplementedError

    @abstractmethod
    def save(self, portfolio: Portfolio) -> None:
        """Insert or replace a portfolio and its holdings."""
        raise NotImplementedError

    @abstractmethod
    def apply_cash_delta(
        self, portfolio_id: int, order_id: str, delta: Decimal, now: datetime
    ) -> bool:
        """Add delta to available cash once per order id.

        Returns:
            True if applied, False if this order id was already applied.
        """
        raise NotImplementedError


class ExecutionOrderRepository(ABC):
    """Port for the local record of broker orders."""

    @abstractmethod
    def save(self, order: ExecutionOrder) -> None:
        """Persist a newly placed order."""
        raise NotImplementedError

    @abstractmethod
    def get(self, order_id: str) -> Optional[ExecutionOrder]:
        """Return an order by broker id, or None."""
        raise NotImplementedError

    @abstractmethod
    def list_open(self, since: datetime) -> list[ExecutionOrder]:
        """Return orders created since the cutoff whose status is not terminal."""
        raise NotImplementedError

    @abstractmethod
    def list_for_signal(self, signal_id: int) -> list[ExecutionOrder]:
        """Return every order recorded for a signal, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def update_status(self, status: BrokerOrderStatus, now: datetime) -> None:
        """Store the latest broker status of an order."""
        raise NotImplementedError


class RecommendationSource(ABC):
    """Port for the opaque producer of trade ideas."""

    @abstractmethod
    async def propose(self, context: PortfolioContext) -> list[ProposedTrade]:
        """Return proposed trades for a portfolio."""
        raise NotImplementedError


class ExecutionGateway(ABC):
    """Port for the external broker order placement system."""

    @abstractmethod
    async def place_order(self, order: OrderRequest) -> OrderPlacement:
        """Place an order and return the broker order id and initial status."""
        raise NotImplementedError

    @abstractmethod
    async def get_order_status(
        self, portfolio_id: int, order_id: str
    ) -> BrokerOrderStatus:
        """Return the broker's authoritative status for an order."""
        raise NotImplementedError

    @abstractmethod
    async def cancel_order(self, portfolio_id: int, order_id: str) -> None:
        """Cancel an open order."""
        raise NotImplementedError

    @abstractmethod
    async def get_holdings(self, portfolio_id: int) -> list[Holding]:
        """Return the positions the broker actually holds for a portfolio."""
        raise NotImplementedError


class QuoteSource(ABC):
    """Port for live last-traded prices."""

    @abstractmethod
    async def get_last_price(self, symbol: str, exchange: str) -> Optional[Decimal]:
        """Return the last traded price, or None when unknown."""
        raise NotImplementedError


class NotificationChannel(ABC):
    """Port for delivering signals and messages to a recipient."""

    @abstractmethod
    async def deliver(
        self, recipient: str, payload: DeliveryPayload
    ) -> DeliveryReceipt:
        """Deliver a rendered signal with its action buttons."""
        raise NotImplementedError

    @abstractmethod
    async def send_text(
        self,
        recipient: str,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> DeliveryReceipt:
        """Send a plain message, optionally with buttons bound to a signal."""
        raise NotImplementedError

    @abstractmethod
    async def mark_handled(
        self, recipient: str, message_ref: str, label: str
    ) -> None:
        """Replace the buttons of a delivered message with an inert label."""
        raise NotImplementedError
