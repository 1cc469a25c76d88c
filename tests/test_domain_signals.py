"""
Tests for the signals domain layer.

Pure domain objects: entities, the lifecycle state machine and the
schedule policy. No database or network.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from signal_engine.domain.signals.entities import (
    BrokerOrderStatus,
    CashPosition,
    Side,
    Signal,
    SignalStatus,
    Trigger,
    normalize_broker_status,
)
from signal_engine.domain.signals.errors import InvalidTransitionError
from signal_engine.domain.signals.schedule_policy import (
    IST,
    AlwaysRun,
    Job,
    SchedulePolicy,
    is_trading_day,
)
from signal_engine.domain.signals.state_machine import (
    SignalEvent,
    can_transition,
    transition,
)


def _signal(status: SignalStatus, side: Side = Side.BUY, trigger: Trigger = None) -> Signal:
    return Signal(
        id=1,
        portfolio_id=1,
        symbol="TCS",
        side=side,
        quantity=4,
        trigger=trigger or Trigger.limit(Decimal("250")),
        confidence=70,
        status=status,
        created_at=datetime(2026, 3, 2, tzinfo=timezone.utc),
    )


# ══════════════════════════════════════════════════════════════════════
# Entities
# ══════════════════════════════════════════════════════════════════════


class TestTrigger:
    def test_limit_reference_price(self):
        assert Trigger.limit(Decimal("500")).reference_price == Decimal("500")

    def test_zone_reserves_at_low_bound(self):
        zone = Trigger.zone(Decimal("90"), Decimal("110"))
        assert zone.reference_price == Decimal("90")
        assert zone.describe() == "Zone: ₹90 - ₹110"

    def test_market_has_no_reference_price(self):
        market = Trigger.market()
        assert market.reference_price == Decimal("0")
        assert not market.is_priced
        assert market.describe() == "At Market Price"


class TestSignalReservation:
    """A BUY reserves reference price x quantity only in a reserving state."""

    @pytest.mark.parametrize(
        "status",
        [SignalStatus.PENDING, SignalStatus.ACKED, SignalStatus.SNOOZED, SignalStatus.PLACING],
    )
    def test_reserving_states(self, status):
        assert _signal(status).reservation == Decimal("1000")

    @pytest.mark.parametrize(
        "status",
        [SignalStatus.EXECUTED, SignalStatus.DISMISSED, SignalStatus.EXPIRED],
    )
    def test_terminal_states_release(self, status):
        assert _signal(status).reservation == Decimal("0")

    def test_sell_reserves_nothing(self):
        assert _signal(SignalStatus.PENDING, side=Side.SELL).reservation == Decimal("0")

    def test_market_buy_reserves_nothing(self):
        signal = _signal(SignalStatus.PENDING, trigger=Trigger.market())
        assert signal.reservation == Decimal("0")


class TestCashPosition:
    def test_effective_cash_floored_at_zero(self):
        position = CashPosition(1, raw_cash=Decimal("100"), reserved_cash=Decimal("250"))
        assert position.effective_cash == Decimal("0")

    def test_effective_cash(self):
        position = CashPosition(1, raw_cash=Decimal("1000"), reserved_cash=Decimal("250"))
        assert position.effective_cash == Decimal("750")


class TestBrokerStatus:
    def test_normalization(self):
        assert normalize_broker_status(" COMPLETE ") == "complete"
        assert normalize_broker_status(None) == "unknown"

    def test_success_and_failure(self):
        assert BrokerOrderStatus("A", "Traded").is_success
        assert BrokerOrderStatus("A", "REJECTED").is_failure
        open_order = BrokerOrderStatus("A", "open")
        assert not open_order.is_success and not open_order.is_failure


# ══════════════════════════════════════════════════════════════════════
# State machine
# ══════════════════════════════════════════════════════════════════════


class TestStateMachine:
    @pytest.mark.parametrize(
        "status, event, expected",
        [
            (SignalStatus.PENDING, SignalEvent.ACK, SignalStatus.ACKED),
            (SignalStatus.SNOOZED, SignalEvent.ACK, SignalStatus.ACKED),
            (SignalStatus.PENDING, SignalEvent.SNOOZE, SignalStatus.SNOOZED),
            (SignalStatus.ACKED, SignalEvent.DISMISS, SignalStatus.DISMISSED),
            (SignalStatus.ACKED, SignalEvent.EXECUTE, SignalStatus.PLACING),
            (SignalStatus.SNOOZED, SignalEvent.EXECUTE, SignalStatus.PLACING),
            (SignalStatus.PLACING, SignalEvent.PLACED, SignalStatus.EXECUTED),
            (SignalStatus.PLACING, SignalEvent.PLACE_FAILED, SignalStatus.PENDING),
            (SignalStatus.SNOOZED, SignalEvent.EXPIRE, SignalStatus.EXPIRED),
            (SignalStatus.EXECUTED, SignalEvent.ROLLBACK, SignalStatus.PENDING),
            (SignalStatus.SNOOZED, SignalEvent.DELIVERED, SignalStatus.PENDING),
        ],
    )
    def test_allowed_transitions(self, status, event, expected):
        assert transition(status, event) is expected

    @pytest.mark.parametrize(
        "status, event",
        [
            (SignalStatus.ACKED, SignalEvent.ACK),
            (SignalStatus.ACKED, SignalEvent.SNOOZE),
            (SignalStatus.ACKED, SignalEvent.EXPIRE),
            (SignalStatus.PLACING, SignalEvent.EXECUTE),
            (SignalStatus.EXECUTED, SignalEvent.DISMISS),
            (SignalStatus.DISMISSED, SignalEvent.EXECUTE),
            (SignalStatus.EXPIRED, SignalEvent.ACK),
            (SignalStatus.PENDING, SignalEvent.PLACED),
        ],
    )
    def test_rejected_transitions(self, status, event):
        assert not can_transition(status, event)
        with pytest.raises(InvalidTransitionError):
            transition(status, event)

    def test_terminal_states_only_leave_through_rollback(self):
        for event in SignalEvent:
            if event is SignalEvent.ROLLBACK:
                continue
            assert not can_transition(SignalStatus.EXECUTED, event)
            assert not can_transition(SignalStatus.DISMISSED, event)
            assert not can_transition(SignalStatus.EXPIRED, event)

    def test_dismissed_and_expired_cannot_roll_back(self):
        assert not can_transition(SignalStatus.DISMISSED, SignalEvent.ROLLBACK)
        assert not can_transition(SignalStatus.EXPIRED, SignalEvent.ROLLBACK)


# ══════════════════════════════════════════════════════════════════════
# Schedule policy
# ══════════════════════════════════════════════════════════════════════


def _ist(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=IST)


class TestSchedulePolicy:
    MONDAY = date(2026, 3, 2)
    SATURDAY = date(2026, 3, 7)
    HOLI = date(2026, 3, 3)

    def test_trading_days(self):
        assert is_trading_day(self.MONDAY)
        assert not is_trading_day(self.SATURDAY)
        assert not is_trading_day(self.HOLI)

    def test_generate_only_in_its_windows(self):
        policy = SchedulePolicy()
        assert policy.should_run(Job.GENERATE, _ist(self.MONDAY, 9, 31))
        assert policy.should_run(Job.GENERATE, _ist(self.MONDAY, 13, 2))
        assert not policy.should_run(Job.GENERATE, _ist(self.MONDAY, 11, 0))

    def test_notify_during_market_hours(self):
        policy = SchedulePolicy()
        assert policy.should_run(Job.NOTIFY, _ist(self.MONDAY, 15, 59))
        assert not policy.should_run(Job.NOTIFY, _ist(self.MONDAY, 16, 0))
        assert not policy.should_run(Job.NOTIFY, _ist(self.MONDAY, 8, 59))

    def test_reconcile_runs_past_close(self):
        assert SchedulePolicy().should_run(Job.RECONCILE, _ist(self.MONDAY, 16, 30))

    def test_weekend_and_holiday_block_market_jobs(self):
        policy = SchedulePolicy()
        assert not policy.should_run(Job.NOTIFY, _ist(self.SATURDAY, 10, 0))
        assert not policy.should_run(Job.RECONCILE, _ist(self.HOLI, 10, 0))

    def test_expiry_runs_every_day(self):
        policy = SchedulePolicy()
        assert policy.should_run(Job.EXPIRE, _ist(self.SATURDAY, 3, 0))
        assert policy.should_run(Job.EXPIRE, _ist(self.HOLI, 23, 0))

    def test_always_run(self):
        assert AlwaysRun().should_run(Job.GENERATE, _ist(self.SATURDAY, 2, 0))
