"""
Pydantic schemas for signal API request/response validation.

These schemas enforce input validation and define the API contract.
No business logic belongs here.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from signal_engine.domain.signals.entities import Signal, SignalAction


class HealthResponse(BaseModel):
    """Response schema for the health endpoint."""

    status: str
    version: str
    database: str
    scheduler: dict[str, Any]


class ErrorResponse(BaseModel):
    """Error body produced by the centralized error handlers."""

    error: str
    detail: Optional[str] = None


class ActionName(str, Enum):
    """Buttons a recipient can press, as accepted over HTTP."""

    ACK = "ACK"
    SNOOZE = "SNOOZE"
    DISMISS = "DISMISS"
    EXECUTE = "EXECUTE"
    RETRY_MARKET = "RETRY_MARKET"


class TriggerSchema(BaseModel):
    type: str
    price: Optional[Decimal] = None
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None
    description: str


class SignalResponse(BaseModel):
    """A persisted trade signal."""

    id: int
    portfolio_id: int
    symbol: str
    exchange: str
    side: str
    quantity: int
    trigger: TriggerSchema
    confidence: int
    rationale: Optional[str] = None
    status: str
    notify_count: int
    last_notified_at: Optional[datetime] = None
    order_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, signal: Signal) -> "SignalResponse":
        return cls(
            id=signal.id,
            portfolio_id=signal.portfolio_id,
            symbol=signal.symbol,
            exchange=signal.exchange,
            side=signal.side.value,
            quantity=signal.quantity,
            trigger=TriggerSchema(
                type=signal.trigger.type.value,
                price=signal.trigger.price,
                low=signal.trigger.low,
                high=signal.trigger.high,
                description=signal.trigger.describe(),
            ),
            confidence=signal.confidence,
            rationale=signal.rationale,
            status=signal.status.value,
            notify_count=signal.notify_count,
            last_notified_at=signal.last_notified_at,
            order_id=signal.order_id,
            created_at=signal.created_at,
            updated_at=signal.updated_at,
        )


class SignalActionItem(BaseModel):
    """One audit record of a signal."""

    action: str
    note: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, action: SignalAction) -> "SignalActionItem":
        return cls(
            action=action.action.value, note=action.note, created_at=action.created_at
        )


class SignalDetailResponse(SignalResponse):
    """A signal with its audit trail."""

    actions: list[SignalActionItem] = Field(default_factory=list)


class SignalListResponse(BaseModel):
    signals: list[SignalResponse]


class SignalActionRequest(BaseModel):
    """Request schema for an inbound button press.

    Attributes:
        action: Pressed button.
        recipient: Chat the press came from.
        message_ref: Delivered message whose buttons should be disabled.
        actor: Who pressed, stored on the audit note.
    """

    action: ActionName
    recipient: Optional[str] = Field(default=None, max_length=64)
    message_ref: Optional[str] = Field(default=None, max_length=64)
    actor: Optional[str] = Field(default=None, max_length=120)


class ActionResponse(BaseModel):
    outcome: str
    message: str
    signal: Optional[SignalResponse] = None
    order_id: Optional[str] = None


class GenerateSignalsRequest(BaseModel):
    """Request schema for an on-demand generation run."""

    portfolio_id: int = Field(..., ge=1)


class GenerateSignalsResponse(BaseModel):
    portfolio_id: int
    proposed: int
    created: list[SignalResponse]
    skipped_reason: Optional[str] = None


class CashPositionResponse(BaseModel):
    """Capital ledger view of a portfolio."""

    portfolio_id: int
    raw_cash: Decimal
    reserved_cash: Decimal
    effective_cash: Decimal


class OrderUpdateRequest(BaseModel):
    """Broker push notification for an order.

    Attributes:
        order_id: Broker order id.
        status: Broker status string (complete, traded, rejected, cancelled, open, ...).
        filled_quantity: Units filled so far.
        average_price: Average fill price.
        message: Broker status message.
    """

    order_id: str = Field(..., min_length=1, max_length=64)
    status: str = Field(..., min_length=1, max_length=32)
    filled_quantity: int = Field(default=0, ge=0)
    average_price: Optional[Decimal] = Field(default=None, ge=0)
    message: Optional[str] = Field(default=None, max_length=500)


class OrderUpdateResponse(BaseModel):
    order_id: str
    outcome: str


class JobRunResponse(BaseModel):
    """Result of a manually triggered job."""

    task_name: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    duration_seconds: float
    details: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
