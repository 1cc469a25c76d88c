"""
SQLAlchemy table definitions for the signals store.

Timestamps are stored as naive UTC so that every dialect (PostgreSQL,
SQLite in tests) compares them the same way; the helpers below convert at
the adapter boundary.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

MONEY = Numeric(18, 2)

portfolios = Table(
    "portfolios",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(120), nullable=False),
    Column("available_cash", MONEY, nullable=False, default=0),
    Column("recipient", String(64), nullable=True),
    Column("gateway_connected", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

holdings = Table(
    "holdings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", Integer, ForeignKey("portfolios.id"), nullable=False),
    Column("symbol", String(32), nullable=False),
    Column("quantity", Integer, nullable=False),
    UniqueConstraint("portfolio_id", "symbol", name="uq_holdings_portfolio_symbol"),
)

trade_signals = Table(
    "trade_signals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", Integer, ForeignKey("portfolios.id"), nullable=False),
    Column("symbol", String(32), nullable=False),
    Column("exchange", String(16), nullable=False, default="NSE"),
    Column("side", String(4), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("trigger_type", String(8), nullable=False, default="MARKET"),
    Column("trigger_price", MONEY, nullable=True),
    Column("trigger_low", MONEY, nullable=True),
    Column("trigger_high", MONEY, nullable=True),
    Column("confidence", Integer, nullable=False, default=50),
    Column("rationale", Text, nullable=True),
    Column("status", String(16), nullable=False, default="PENDING"),
    Column("notify_count", Integer, nullable=False, default=0),
    Column("last_notified_at", DateTime, nullable=True),
    Column("order_id", String(64), nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Index("ix_trade_signals_portfolio_status", "portfolio_id", "status"),
    Index("ix_trade_signals_status_notified", "status", "last_notified_at"),
    Index("ix_trade_signals_created_at", "created_at"),
    Index("ix_trade_signals_order_id", "order_id"),
)

signal_actions = Table(
    "signal_actions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("signal_id", Integer, ForeignKey("trade_signals.id"), nullable=False),
    Column("action", String(16), nullable=False),
    Column("note", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Index("ix_signal_actions_signal_id", "signal_id"),
)

execution_orders = Table(
    "execution_orders",
    metadata,
    Column("order_id", String(64), primary_key=True),
    Column("signal_id", Integer, ForeignKey("trade_signals.id"), nullable=False),
    Column("portfolio_id", Integer, ForeignKey("portfolios.id"), nullable=False),
    Column("side", String(4), nullable=False),
    Column("order_type", String(8), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price", MONEY, nullable=False, default=0),
    Column("status", String(32), nullable=False),
    Column("filled_quantity", Integer, nullable=False, default=0),
    Column("average_price", MONEY, nullable=True),
    Column("message", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Index("ix_execution_orders_created_at", "created_at"),
)

applied_fills = Table(
    "applied_fills",
    metadata,
    Column("order_id", String(64), primary_key=True),
    Column("portfolio_id", Integer, ForeignKey("portfolios.id"), nullable=False),
    Column("amount", MONEY, nullable=False),
    Column("applied_at", DateTime, nullable=False),
)


def build_db_engine(database_url: str) -> Engine:
    """Build a SQLAlchemy engine for the signals store.

    SQLite connections are shared across threads; an in-memory SQLite URL
    uses a single static connection so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        in_memory = ":memory:" in database_url or database_url.rstrip("/") in (
            "sqlite:",
            "sqlite+pysqlite:",
        )
        if in_memory:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def create_schema(engine: Engine) -> None:
    """Create all engine tables that do not exist yet."""
    metadata.create_all(engine)


def to_db(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db(value: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a stored naive datetime."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
