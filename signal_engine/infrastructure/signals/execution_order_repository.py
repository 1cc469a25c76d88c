"""
Adapter: Broker order persistence.

Implements ExecutionOrderRepository port.
Statuses are stored normalised (lower case). Once an order row reaches a
terminal broker status it is no longer overwritten, so a late or
out-of-order update cannot reopen it.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from signal_engine.domain.signals.entities import (
    BROKER_TERMINAL_STATUSES,
    BrokerOrderStatus,
    ExecutionOrder,
    OrderType,
    Side,
    normalize_broker_status,
)
from signal_engine.domain.signals.ports import ExecutionOrderRepository
from signal_engine.infrastructure.signals.tables import (
    execution_orders,
    from_db,
    to_db,
)

logger = logging.getLogger(__name__)


def _row_to_order(row: Any) -> ExecutionOrder:
    return ExecutionOrder(
        order_id=row.order_id,
        signal_id=row.signal_id,
        portfolio_id=row.portfolio_id,
        side=Side(row.side),
        order_type=OrderType(row.order_type),
        quantity=row.quantity,
        price=Decimal(str(row.price)),
        status=row.status,
        created_at=from_db(row.created_at),
        filled_quantity=row.filled_quantity,
        average_price=(
            Decimal(str(row.average_price)) if row.average_price is not None else None
        ),
        message=row.message,
        updated_at=from_db(row.updated_at),
    )


class ExecutionOrderRepositoryAdapter(ExecutionOrderRepository):
    """SQLAlchemy adapter for the execution_orders table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def save(self, order: ExecutionOrder) -> None:
        query = insert(execution_orders).values(
            order_id=order.order_id,
            signal_id=order.signal_id,
            portfolio_id=order.portfolio_id,
            side=order.side.value,
            order_type=order.order_type.value,
            quantity=order.quantity,
            price=order.price,
            status=normalize_broker_status(order.status),
            filled_quantity=order.filled_quantity,
            average_price=order.average_price,
            message=order.message,
            created_at=to_db(order.created_at),
            updated_at=to_db(order.updated_at or order.created_at),
        )
        with self._engine.begin() as conn:
            conn.execute(query)
        logger.info(
            "Recorded order %s for signal %s (%s)",
            order.order_id, order.signal_id, order.status,
        )

    def get(self, order_id: str) -> Optional[ExecutionOrder]:
        query = select(execution_orders).where(execution_orders.c.order_id == order_id)
        with self._engine.connect() as conn:
            row = conn.execute(query).first()
        return _row_to_order(row) if row is not None else None

    def list_open(self, since: datetime) -> list[ExecutionOrder]:
        query = (
            select(execution_orders)
            .where(
                execution_orders.c.created_at >= to_db(since),
                execution_orders.c.status.not_in(sorted(BROKER_TERMINAL_STATUSES)),
            )
            .order_by(execution_orders.c.created_at.asc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_order(row) for row in rows]

    def list_for_signal(self, signal_id: int) -> list[ExecutionOrder]:
        query = (
            select(execution_orders)
            .where(execution_orders.c.signal_id == signal_id)
            .order_by(execution_orders.c.created_at.asc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_order(row) for row in rows]

    def update_status(self, status: BrokerOrderStatus, now: datetime) -> None:
        values: dict[str, Any] = {
            "status": status.normalized,
            "filled_quantity": status.filled_quantity,
            "updated_at": to_db(now),
        }
        if status.average_price is not None:
            values["average_price"] = status.average_price
        if status.message:
            values["message"] = status.message

        query = (
            update(execution_orders)
            .where(
                execution_orders.c.order_id == status.order_id,
                execution_orders.c.status.not_in(sorted(BROKER_TERMINAL_STATUSES)),
            )
            .values(**values)
        )
        with self._engine.begin() as conn:
            updated = conn.execute(query).rowcount
        if updated == 0:
            logger.debug("Order %s not updated (unknown or already terminal)", status.order_id)
