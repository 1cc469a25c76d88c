"""
Domain entities for the signals bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class Side(Enum):
    """Direction of a proposed or executed trade."""

    BUY = "BUY"
    SELL = "SELL"


class TriggerType(Enum):
    """Price condition under which a signal is meant to execute."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"
    ZONE = "ZONE"


class SignalStatus(Enum):
    """Lifecycle status of a trade signal."""

    PENDING = "PENDING"
    ACKED = "ACKED"
    SNOOZED = "SNOOZED"
    PLACING = "PLACING"
    EXECUTED = "EXECUTED"
    DISMISSED = "DISMISSED"
    EXPIRED = "EXPIRED"


RESERVING_STATUSES = frozenset(
    {
        SignalStatus.PENDING,
        SignalStatus.ACKED,
        SignalStatus.SNOOZED,
        SignalStatus.PLACING,
    }
)

TERMINAL_STATUSES = frozenset(
    {SignalStatus.EXECUTED, SignalStatus.DISMISSED, SignalStatus.EXPIRED}
)

DELIVERABLE_STATUSES = frozenset({SignalStatus.PENDING, SignalStatus.SNOOZED})


class ActionType(Enum):
    """Audit record action written for every signal transition."""

    ACK = "ACK"
    SNOOZE_30M = "SNOOZE_30M"
    DISMISS = "DISMISS"
    EXECUTE = "EXECUTE"
    ROLLBACK = "ROLLBACK"
    EXPIRE = "EXPIRE"


class UserAction(Enum):
    """Button a recipient can press on a delivered signal."""

    ACK = "ack"
    SNOOZE = "snooze"
    DISMISS = "dismiss"
    EXECUTE = "exec"
    RETRY_MARKET = "mkt"


class OrderType(Enum):
    """Order shape understood by the execution gateway."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"


BROKER_SUCCESS_STATUSES = frozenset({"complete", "traded"})
BROKER_FAILURE_STATUSES = frozenset({"rejected", "cancelled"})
BROKER_TERMINAL_STATUSES = BROKER_SUCCESS_STATUSES | BROKER_FAILURE_STATUSES


def normalize_broker_status(status: Optional[str]) -> str:
    """Lower-case a broker status string, mapping empty values to 'unknown'."""
    return (status or "unknown").strip().lower()


@dataclass(frozen=True)
class Trigger:
    """At-market, limit or zone trigger of a signal."""

    type: TriggerType
    price: Optional[Decimal] = None
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None

    @classmethod
    def market(cls) -> "Trigger":
        return cls(TriggerType.MARKET)

    @classmethod
    def limit(cls, price: Decimal) -> "Trigger":
        return cls(TriggerType.LIMIT, price=price)

    @classmethod
    def zone(cls, low: Decimal, high: Decimal) -> "Trigger":
        return cls(TriggerType.ZONE, low=low, high=high)

    @property
    def reference_price(self) -> Decimal:
        """Price used to reserve cash; zero when it cannot be known in advance."""
        if self.type is TriggerType.LIMIT and self.price:
            return self.price
        if self.type is TriggerType.ZONE and self.low:
            return self.low
        return Decimal("0")

    @property
    def is_priced(self) -> bool:
        return self.reference_price > 0

    def describe(self) -> str:
        """Human readable trigger description."""
        if self.type is TriggerType.LIMIT:
            return f"Limit: ₹{self.price}"
        if self.type is TriggerType.ZONE:
            return f"Zone: ₹{self.low} - ₹{self.high}"
        return "At Market Price"


@dataclass(frozen=True)
class ProposedTrade:
    """A trade idea returned by the recommendation source."""

    symbol: str
    side: Side
    quantity: int
    trigger: Trigger
    confidence: int
    rationale: Optional[str] = None
    exchange: str = "NSE"

    @property
    def cost(self) -> Decimal:
        return self.trigger.reference_price * self.quantity


@dataclass
class Signal:
    """A proposed trade persisted with a lifecycle state."""

    id: int
    portfolio_id: int
    symbol: str
    side: Side
    quantity: int
    trigger: Trigger
    confidence: int
    status: SignalStatus
    created_at: datetime
    exchange: str = "NSE"
    rationale: Optional[str] = None
    notify_count: int = 0
    last_notified_at: Optional[datetime] = None
    order_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def reservation(self) -> Decimal:
        """Cash claimed by this signal while it sits in a reserving state."""
        if self.side is not Side.BUY or self.status not in RESERVING_STATUSES:
            return Decimal("0")
        return self.trigger.reference_price * self.quantity


@dataclass(frozen=True)
class SignalAction:
    """Append-only audit record of a signal transition."""

    signal_id: int
    action: ActionType
    created_at: datetime
    note: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class Holding:
    """A position held by a portfolio."""

    symbol: str
    quantity: int


@dataclass
class Portfolio:
    """The slice of a portfolio the engine needs.

    Attributes:
        available_cash: Raw spendable cash, mutated only by applied fills.
        recipient: Notification channel address (chat id) or None.
        gateway_connected: Whether a live execution-gateway session exists.
    """

    id: int
    name: str
    available_cash: Decimal
    recipient: Optional[str] = None
    gateway_connected: bool = False
    is_active: bool = True
    holdings: list[Holding] = field(default_factory=list)

    def held_quantity(self, symbol: str) -> int:
        for holding in self.holdings:
            if holding.symbol.upper() == symbol.upper():
                return holding.quantity
        return 0


@dataclass(frozen=True)
class CashPosition:
    """Computed capital ledger view for a portfolio."""

    portfolio_id: int
    raw_cash: Decimal
    reserved_cash: Decimal

    @property
    def effective_cash(self) -> Decimal:
        return max(Decimal("0"), self.raw_cash - self.reserved_cash)


@dataclass(frozen=True)
class OrderRequest:
    """Order shape sent to the execution gateway."""

    portfolio_id: int
    symbol: str
    exchange: str
    side: Side
    order_type: OrderType
    quantity: int
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class OrderPlacement:
    """Gateway answer to a placed order."""

    order_id: str
    status: str


@dataclass(frozen=True)
class BrokerOrderStatus:
    """Authoritative order status reported by the gateway."""

    order_id: str
    status: str
    filled_quantity: int = 0
    average_price: Optional[Decimal] = None
    message: Optional[str] = None

    @property
    def normalized(self) -> str:
        return normalize_broker_status(self.status)

    @property
    def is_success(self) -> bool:
        return self.normalized in BROKER_SUCCESS_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.normalized in BROKER_FAILURE_STATUSES


@dataclass
class ExecutionOrder:
    """Local record of a broker order placed for a signal."""

    order_id: str
    signal_id: int
    portfolio_id: int
    side: Side
    order_type: OrderType
    quantity: int
    price: Decimal
    status: str
    created_at: datetime
    filled_quantity: int = 0
    average_price: Optional[Decimal] = None
    message: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return normalize_broker_status(self.status) in BROKER_TERMINAL_STATUSES


@dataclass(frozen=True)
class Fill:
    """A confirmed broker fill to be applied to the capital ledger."""

    order_id: str
    portfolio_id: int
    side: Side
    filled_quantity: int
    average_price: Decimal

    @property
    def amount(self) -> Decimal:
        return self.average_price * self.filled_quantity


@dataclass(frozen=True)
class ActionButton:
    """A button offered alongside a delivered message."""

    label: str
    action: UserAction


@dataclass(frozen=True)
class DeliveryPayload:
    """Everything a notification channel needs to render a signal."""

    signal_id: int
    portfolio_name: str
    symbol: str
    exchange: str
    side: Side
    quantity: int
    trigger_description: str
    confidence: int
    rationale: Optional[str]
    reminder_number: int
    actions: tuple[ActionButton, ...]


@dataclass(frozen=True)
class DeliveryReceipt:
    """Reference to a delivered message, used to edit its buttons later."""

    message_ref: Optional[str] = None


@dataclass(frozen=True)
class PortfolioContext:
    """Input handed to the recommendation source."""

    portfolio: Portfolio
    cash: CashPosition
    avoid_symbols: tuple[str, ...] = ()
