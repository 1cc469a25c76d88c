"""
Adapter: Trade signal persistence.

Implements SignalRepository port.
Reads/writes the trade_signals and signal_actions tables. Every status
change is a conditional UPDATE on the allowed source states, written in the
same transaction as its audit record.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine

from signal_engine.domain.signals.entities import (
    DELIVERABLE_STATUSES,
    RESERVING_STATUSES,
    ActionType,
    ProposedTrade,
    Side,
    Signal,
    SignalAction,
    SignalStatus,
    Trigger,
    TriggerType,
)
from signal_engine.domain.signals.ports import SignalRepository
from signal_engine.domain.signals.state_machine import (
    AUDIT_ACTIONS,
    TRANSITIONS,
    SignalEvent,
)
from signal_engine.infrastructure.signals.tables import (
    from_db,
    signal_actions,
    to_db,
    trade_signals,
)

logger = logging.getLogger(__name__)

_ROLLBACK_EVENTS = frozenset({SignalEvent.ROLLBACK, SignalEvent.PLACE_FAILED})


def _values(statuses) -> list[str]:
    return sorted(s.value for s in statuses)


def _row_to_signal(row: Any) -> Signal:
    trigger = Trigger(
        type=TriggerType(row.trigger_type),
        price=_decimal(row.trigger_price),
        low=_decimal(row.trigger_low),
        high=_decimal(row.trigger_high),
    )
    return Signal(
        id=row.id,
        portfolio_id=row.portfolio_id,
        symbol=row.symbol,
        side=Side(row.side),
        quantity=row.quantity,
        trigger=trigger,
        confidence=row.confidence,
        status=SignalStatus(row.status),
        created_at=from_db(row.created_at),
        exchange=row.exchange,
        rationale=row.rationale,
        notify_count=row.notify_count,
        last_notified_at=from_db(row.last_notified_at),
        order_id=row.order_id,
        updated_at=from_db(row.updated_at),
    )


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class SignalRepositoryAdapter(SignalRepository):
    """SQLAlchemy adapter for trade_signals and their audit trail."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create(
        self, portfolio_id: int, proposal: ProposedTrade, created_at: datetime
    ) -> Signal:
        query = insert(trade_signals).values(
            portfolio_id=portfolio_id,
            symbol=proposal.symbol.upper(),
            exchange=proposal.exchange,
            side=proposal.side.value,
            quantity=proposal.quantity,
            trigger_type=proposal.trigger.type.value,
            trigger_price=proposal.trigger.price,
            trigger_low=proposal.trigger.low,
            trigger_high=proposal.trigger.high,
            confidence=proposal.confidence,
            rationale=proposal.rationale,
            status=SignalStatus.PENDING.value,
            notify_count=0,
            created_at=to_db(created_at),
            updated_at=to_db(created_at),
        )
        with self._engine.begin() as conn:
            result = conn.execute(query)
            signal_id = result.inserted_primary_key[0]
            row = self._fetch(conn, signal_id)

        logger.info(
            "Created signal %s: %s %s x%s (portfolio %s)",
            signal_id, proposal.side.value, proposal.symbol,
            proposal.quantity, portfolio_id,
        )
        return _row_to_signal(row)

    def get(self, signal_id: int) -> Optional[Signal]:
        with self._engine.connect() as conn:
            row = self._fetch(conn, signal_id)
        return _row_to_signal(row) if row is not None else None

    def list_for_portfolio(
        self,
        portfolio_id: int,
        status: Optional[SignalStatus] = None,
        limit: int = 50,
    ) -> list[Signal]:
        query = select(trade_signals).where(
            trade_signals.c.portfolio_id == portfolio_id
        )
        if status is not None:
            query = query.where(trade_signals.c.status == status.value)
        query = query.order_by(
            trade_signals.c.created_at.desc(), trade_signals.c.id.desc()
        ).limit(limit)
        return self._select(query)

    def list_reserving_buys(self, portfolio_id: int) -> list[Signal]:
        query = select(trade_signals).where(
            trade_signals.c.portfolio_id == portfolio_id,
            trade_signals.c.side == Side.BUY.value,
            trade_signals.c.status.in_(_values(RESERVING_STATUSES)),
        )
        return self._select(query)

    def list_open_sells(self, portfolio_id: int) -> list[Signal]:
        query = select(trade_signals).where(
            trade_signals.c.portfolio_id == portfolio_id,
            trade_signals.c.side == Side.SELL.value,
            trade_signals.c.status.in_(_values(RESERVING_STATUSES)),
        )
        return self._select(query)

    def count_created_since(
        self,
        portfolio_id: int,
        since: datetime,
        exclude: Sequence[SignalStatus] = (),
    ) -> int:
        query = select(func.count()).select_from(trade_signals).where(
            trade_signals.c.portfolio_id == portfolio_id,
            trade_signals.c.created_at >= to_db(since),
        )
        if exclude:
            query = query.where(trade_signals.c.status.not_in(_values(exclude)))
        with self._engine.connect() as conn:
            return int(conn.execute(query).scalar_one())

    def find_due_for_delivery(self, notified_before: datetime) -> list[Signal]:
        query = (
            select(trade_signals)
            .where(
                trade_signals.c.status.in_(_values(DELIVERABLE_STATUSES)),
                or_(
                    trade_signals.c.last_notified_at.is_(None),
                    trade_signals.c.last_notified_at <= to_db(notified_before),
                ),
            )
            .order_by(trade_signals.c.created_at.asc(), trade_signals.c.id.asc())
        )
        return self._select(query)

    def find_stale(self, created_before: datetime) -> list[Signal]:
        query = (
            select(trade_signals)
            .where(
                trade_signals.c.status.in_(_values(DELIVERABLE_STATUSES)),
                trade_signals.c.created_at < to_db(created_before),
            )
            .order_by(trade_signals.c.id.asc())
        )
        return self._select(query)

    def find_placing_before(self, updated_before: datetime) -> list[Signal]:
        query = (
            select(trade_signals)
            .where(
                trade_signals.c.status == SignalStatus.PLACING.value,
                trade_signals.c.order_id.is_(None),
                trade_signals.c.updated_at < to_db(updated_before),
            )
            .order_by(trade_signals.c.id.asc())
        )
        return self._select(query)

    def find_executed_buys_since(
        self, portfolio_id: int, since: datetime
    ) -> list[Signal]:
        query = (
            select(trade_signals)
            .where(
                trade_signals.c.portfolio_id == portfolio_id,
                trade_signals.c.side == Side.BUY.value,
                trade_signals.c.status == SignalStatus.EXECUTED.value,
                trade_signals.c.created_at >= to_db(since),
            )
            .order_by(trade_signals.c.created_at.desc())
        )
        return self._select(query)

    def apply_event(
        self,
        signal_id: int,
        event: SignalEvent,
        now: datetime,
        note: Optional[str] = None,
        order_id: Optional[str] = None,
        expected_order_id: Optional[str] = None,
    ) -> Optional[Signal]:
        sources, target = TRANSITIONS[event]
        values: dict[str, Any] = {"status": target.value, "updated_at": to_db(now)}
        if event is SignalEvent.PLACED:
            values["order_id"] = order_id
        if target is SignalStatus.PENDING:
            values["order_id"] = None
        if event in _ROLLBACK_EVENTS:
            values["last_notified_at"] = None

        conditions = [
            trade_signals.c.id == signal_id,
            trade_signals.c.status.in_(_values(sources)),
        ]
        if expected_order_id is not None:
            conditions.append(trade_signals.c.order_id == expected_order_id)
        query = update(trade_signals).where(and_(*conditions)).values(**values)

        with self._engine.begin() as conn:
            result = conn.execute(query)
            if result.rowcount != 1:
                logger.info(
                    "Signal %s: %s not applied (state moved on)",
                    signal_id, event.value,
                )
                return None

            action = AUDIT_ACTIONS.get(event)
            if action is not None:
                self._audit(conn, signal_id, action, note, now)
            row = self._fetch(conn, signal_id)

        logger.info("Signal %s -> %s (%s)", signal_id, target.value, event.value)
        return _row_to_signal(row)

    def record_delivery(self, signal_id: int, now: datetime) -> bool:
        query = (
            update(trade_signals)
            .where(
                trade_signals.c.id == signal_id,
                trade_signals.c.status.in_(_values(DELIVERABLE_STATUSES)),
            )
            .values(
                status=SignalStatus.PENDING.value,
                last_notified_at=to_db(now),
                notify_count=trade_signals.c.notify_count + 1,
                updated_at=to_db(now),
            )
        )
        with self._engine.begin() as conn:
            updated = conn.execute(query).rowcount
        return updated == 1

    def update_quantity(self, signal_id: int, quantity: int, now: datetime) -> None:
        query = (
            update(trade_signals)
            .where(trade_signals.c.id == signal_id)
            .values(quantity=quantity, updated_at=to_db(now))
        )
        with self._engine.begin() as conn:
            conn.execute(query)
        logger.info("Signal %s quantity updated to %s", signal_id, quantity)

    def list_actions(self, signal_id: int) -> list[SignalAction]:
        query = (
            select(signal_actions)
            .where(signal_actions.c.signal_id == signal_id)
            .order_by(signal_actions.c.created_at.asc(), signal_actions.c.id.asc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            SignalAction(
                signal_id=row.signal_id,
                action=ActionType(row.action),
                created_at=from_db(row.created_at),
                note=row.note,
                id=row.id,
            )
            for row in rows
        ]

    # ── helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _fetch(conn: Connection, signal_id: int) -> Any:
        query = select(trade_signals).where(trade_signals.c.id == signal_id)
        return conn.execute(query).first()

    @staticmethod
    def _audit(
        conn: Connection,
        signal_id: int,
        action: ActionType,
        note: Optional[str],
        now: datetime,
    ) -> None:
        conn.execute(
            insert(signal_actions).values(
                signal_id=signal_id,
                action=action.value,
                note=note,
                created_at=to_db(now),
            )
        )

    def _select(self, query: Any) -> list[Signal]:
        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_signal(row) for row in rows]
