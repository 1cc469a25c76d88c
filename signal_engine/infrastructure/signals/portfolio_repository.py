"""
Adapter: Portfolio persistence.

Implements PortfolioRepository port.
Reads portfolios with their holdings and applies cash deltas. A cash delta
is recorded in applied_fills under the broker order id in the same
transaction as the cash update, so a second delta for that order fails on
the primary key and leaves cash untouched.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from signal_engine.domain.signals.entities import Holding, Portfolio
from signal_engine.domain.signals.ports import PortfolioRepository
from signal_engine.infrastructure.signals.tables import (
    applied_fills,
    holdings,
    portfolios,
    to_db,
)

logger = logging.getLogger(__name__)


class PortfolioRepositoryAdapter(PortfolioRepository):
    """SQLAlchemy adapter for portfolios, holdings and applied fills."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get(self, portfolio_id: int) -> Optional[Portfolio]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(portfolios).where(portfolios.c.id == portfolio_id)
            ).first()
            if row is None:
                return None
            return self._to_entity(conn, row)

    def list_active(self) -> list[Portfolio]:
        query = (
            select(portfolios)
            .where(portfolios.c.is_active.is_(True))
            .order_by(portfolios.c.id.asc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            return [self._to_entity(conn, row) for row in rows]

    def save(self, portfolio: Portfolio) -> None:
        values = {
            "name": portfolio.name,
            "available_cash": portfolio.available_cash,
            "recipient": portfolio.recipient,
            "gateway_connected": portfolio.gateway_connected,
            "is_active": portfolio.is_active,
        }
        with self._engine.begin() as conn:
            exists = conn.execute(
                select(portfolios.c.id).where(portfolios.c.id == portfolio.id)
            ).first()
            if exists is None:
                conn.execute(insert(portfolios).values(id=portfolio.id, **values))
            else:
                conn.execute(
                    update(portfolios)
                    .where(portfolios.c.id == portfolio.id)
                    .values(**values)
                )

            conn.execute(delete(holdings).where(holdings.c.portfolio_id == portfolio.id))
            if portfolio.holdings:
                conn.execute(
                    insert(holdings),
                    [
                        {
                            "portfolio_id": portfolio.id,
                            "symbol": h.symbol.upper(),
                            "quantity": h.quantity,
                        }
                        for h in portfolio.holdings
                    ],
                )

    def apply_cash_delta(
        self, portfolio_id: int, order_id: str, delta: Decimal, now: datetime
    ) -> bool:
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    insert(applied_fills).values(
                        order_id=order_id,
                        portfolio_id=portfolio_id,
                        amount=delta,
                        applied_at=to_db(now),
                    )
                )
                conn.execute(
                    update(portfolios)
                    .where(portfolios.c.id == portfolio_id)
                    .values(available_cash=portfolios.c.available_cash + delta)
                )
        except IntegrityError:
            logger.info("Cash delta for order %s already applied", order_id)
            return False
        return True

    @staticmethod
    def _to_entity(conn: Connection, row: Any) -> Portfolio:
        held = conn.execute(
            select(holdings.c.symbol, holdings.c.quantity)
            .where(holdings.c.portfolio_id == row.id)
            .order_by(holdings.c.symbol.asc())
        ).fetchall()
        return Portfolio(
            id=row.id,
            name=row.name,
            available_cash=Decimal(str(row.available_cash)),
            recipient=row.recipient,
            gateway_connected=bool(row.gateway_connected),
            is_active=bool(row.is_active),
            holdings=[Holding(symbol=h.symbol, quantity=h.quantity) for h in held],
        )
