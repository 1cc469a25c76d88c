"""
Data Transfer Objects for the signals application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from signal_engine.domain.signals.entities import Signal, UserAction


class Outcome(str, Enum):
    """Result code of an inbound action or an execution attempt."""

    OK = "OK"
    ALREADY_HANDLED = "ALREADY_HANDLED"
    NOT_FOUND = "NOT_FOUND"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    PRICE_DEVIATION = "PRICE_DEVIATION"
    INSUFFICIENT_CAPITAL = "INSUFFICIENT_CAPITAL"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"


class OrderUpdateOutcome(str, Enum):
    """What reconciliation did with one broker order update."""

    EXECUTED = "EXECUTED"
    ROLLED_BACK = "ROLLED_BACK"
    OPEN = "OPEN"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class ActionEvent:
    """Input DTO for a button press reported by the notification channel.

    Attributes:
        signal_id: Signal the button belongs to.
        action: Pressed button.
        recipient: Chat the press came from, used for follow-up messages.
        message_ref: Delivered message whose buttons should be disabled.
        actor: Free-text identity of who pressed, stored on the audit note.
    """

    signal_id: int
    action: UserAction
    recipient: Optional[str] = None
    message_ref: Optional[str] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class ActionResult:
    """Output DTO for an action or execution attempt."""

    outcome: Outcome
    message: str
    signal: Optional[Signal] = None
    order_id: Optional[str] = None


@dataclass(frozen=True)
class NotificationPassResult:
    """Output DTO summarising one notification pass.

    Attributes:
        selected: Signals due for delivery.
        delivered: Successful deliveries.
        skipped: Signals whose portfolio has no recipient.
        failed: Deliveries that raised.
        expired: Signals expired by the sweep run first.
    """

    selected: int = 0
    delivered: int = 0
    skipped: int = 0
    failed: int = 0
    expired: int = 0


@dataclass(frozen=True)
class ReconcileResult:
    """Output DTO summarising one reconciliation sweep."""

    checked: int = 0
    executed: int = 0
    rolled_back: int = 0
    still_open: int = 0
    ignored: int = 0
    errors: int = 0
    recovered: int = 0


@dataclass(frozen=True)
class VerificationResult:
    """Output DTO of the executed-signal (unfilled) check for one portfolio."""

    portfolio_id: int
    checked: int = 0
    unfilled_symbols: tuple[str, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    """Output DTO of a generation run for one portfolio."""

    portfolio_id: int
    created: list[Signal] = field(default_factory=list)
    proposed: int = 0
    skipped_reason: Optional[str] = None
