"""
Use case: Execute a signal through the execution gateway and reconcile
the resulting broker orders.

Input:  signal id (+ recipient / message ref of the pressed button)
Output: ActionResult (EXECUTED, FAILED, ALREADY_HANDLED, ...)
Side effects: PENDING/SNOOZED/ACKED -> PLACING -> EXECUTED, or back to
PENDING on gateway failure; records the ExecutionOrder; sends follow-up
messages.

Reconciliation polls non-terminal orders (and accepts pushed broker
updates through apply_order_update). A completed order applies its fill
to the capital ledger once per order id; a rejected or cancelled order
rolls its signal back to PENDING only while the signal is still linked to
that order, so late or out-of-order updates are harmless.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Sequence

from signal_engine.application.signals.dtos import (
    ActionResult,
    OrderUpdateOutcome,
    Outcome,
    ReconcileResult,
)
from signal_engine.application.signals.notify_pending_signals import RETRY_ACTIONS
from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.entities import (
    BROKER_FAILURE_STATUSES,
    ActionButton,
    BrokerOrderStatus,
    ExecutionOrder,
    Fill,
    OrderRequest,
    OrderType,
    Side,
    Signal,
    SignalStatus,
    TriggerType,
    UserAction,
    normalize_broker_status,
)
from signal_engine.domain.signals.ports import (
    Clock,
    ExecutionGateway,
    ExecutionOrderRepository,
    NotificationChannel,
    PortfolioRepository,
    QuoteSource,
    SignalRepository,
    utc_now,
)
from signal_engine.domain.signals.state_machine import SignalEvent, can_transition

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_MAX_PRICE_DEVIATION = Decimal("0.20")
DEFAULT_RECONCILE_LOOKBACK = timedelta(hours=24)
DEFAULT_PLACING_GRACE = timedelta(minutes=10)
DEFAULT_PACING_SECONDS = 0.5

PRICE_DEVIATION_ACTIONS = (
    ActionButton("🔄 Retry as MARKET", UserAction.RETRY_MARKET),
    ActionButton("❌ Dismiss", UserAction.DISMISS),
)


def build_order(signal: Signal, force_market: bool = False) -> OrderRequest:
    """Map a signal's trigger to a gateway order.

    At-market maps to MARKET, limit to LIMIT at the limit price and zone to
    LIMIT at the zone low bound. force_market always yields MARKET.
    """
    order_type = OrderType.MARKET
    price = Decimal("0")
    if not force_market:
        if signal.trigger.type is TriggerType.LIMIT and signal.trigger.price:
            order_type, price = OrderType.LIMIT, signal.trigger.price
        elif signal.trigger.type is TriggerType.ZONE and signal.trigger.low:
            order_type, price = OrderType.LIMIT, signal.trigger.low
    return OrderRequest(
        portfolio_id=signal.portfolio_id,
        symbol=signal.symbol,
        exchange=signal.exchange,
        side=signal.side,
        order_type=order_type,
        quantity=signal.quantity,
        price=price,
    )


class ExecutionCoordinator:
    """Places orders for signals and reconciles them with the broker.

    Args:
        signal_repo: Signal store.
        portfolio_repo: Source of gateway status and recipients.
        order_repo: Local record of broker orders.
        gateway: Execution gateway.
        channel: Notification channel for follow-up messages.
        ledger: Capital ledger (fills, pre-order checks).
        clock: Injectable time source.
        quote_source: Optional live prices enabling the pre-order checks.
        max_price_deviation: Largest accepted |limit - ltp| / ltp.
        reconcile_lookback: Age limit of orders polled by reconcile().
        placing_grace: Age after which reconcile() releases a PLACING signal
            that never got an order.
        pacing_seconds: Delay between consecutive gateway polls.
        sleep: Awaitable used for pacing (tests pass a no-op).
    """

    def __init__(
        self,
        signal_repo: SignalRepository,
        portfolio_repo: PortfolioRepository,
        order_repo: ExecutionOrderRepository,
        gateway: ExecutionGateway,
        channel: NotificationChannel,
        ledger: CapitalLedger,
        clock: Clock = utc_now,
        quote_source: Optional[QuoteSource] = None,
        max_price_deviation: Decimal = DEFAULT_MAX_PRICE_DEVIATION,
        reconcile_lookback: timedelta = DEFAULT_RECONCILE_LOOKBACK,
        placing_grace: timedelta = DEFAULT_PLACING_GRACE,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._signal_repo = signal_repo
        self._portfolio_repo = portfolio_repo
        self._order_repo = order_repo
        self._gateway = gateway
        self._channel = channel
        self._ledger = ledger
        self._clock = clock
        self._quotes = quote_source
        self._max_price_deviation = max_price_deviation
        self._reconcile_lookback = reconcile_lookback
        self._placing_grace = placing_grace
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute(
        self,
        signal_id: int,
        recipient: Optional[str] = None,
        message_ref: Optional[str] = None,
        force_market: bool = False,
    ) -> ActionResult:
        """Place an order for a signal.

        Args:
            signal_id: Signal to execute.
            recipient: Chat to report to; defaults to the portfolio's recipient.
            message_ref: Delivered message whose buttons are disabled once placing starts.
            force_market: Place a MARKET order whatever the trigger (retry as market).

        Returns:
            ActionResult with the outcome and a user-visible message.
        """
        signal = self._signal_repo.get(signal_id)
        if signal is None:
            return ActionResult(Outcome.NOT_FOUND, f"Signal {signal_id} not found")

        if not can_transition(signal.status, SignalEvent.EXECUTE):
            return ActionResult(
                Outcome.ALREADY_HANDLED,
                f"Signal already {signal.status.value.lower()}",
                signal,
            )

        portfolio = self._portfolio_repo.get(signal.portfolio_id)
        if portfolio is None or not portfolio.gateway_connected:
            return ActionResult(
                Outcome.GATEWAY_UNAVAILABLE,
                "Execution gateway not connected for this portfolio",
                signal,
            )
        recipient = recipient or portfolio.recipient

        order = build_order(signal, force_market)
        refused = await self._pre_order_checks(signal, order, recipient)
        if refused is not None:
            return refused

        placing = self._signal_repo.apply_event(
            signal.id, SignalEvent.EXECUTE, self._clock()
        )
        if placing is None:
            return ActionResult(
                Outcome.ALREADY_HANDLED, "Signal is already being handled", signal
            )
        try:
            return await self._place(placing, order, recipient, message_ref)
        except BaseException:
            # No-op once the signal already left PLACING.
            released = self._signal_repo.apply_event(
                signal.id,
                SignalEvent.PLACE_FAILED,
                self._clock(),
                note="Placement interrupted",
            )
            if released is not None:
                logger.error("Placement of signal %s interrupted, released", signal.id)
            raise

    async def _place(
        self,
        signal: Signal,
        order: OrderRequest,
        recipient: Optional[str],
        message_ref: Optional[str],
    ) -> ActionResult:
        if recipient and message_ref:
            await self._mark_handled(recipient, message_ref, "⏳ Placing order...")

        try:
            placement = await self._gateway.place_order(order)
        except Exception as exc:
            logger.error("Order placement failed for signal %s: %s", signal.id, exc)
            return await self._placement_failed(signal, str(exc), recipient)

        if normalize_broker_status(placement.status) in BROKER_FAILURE_STATUSES:
            return await self._placement_failed(
                signal, f"order {placement.status}", recipient
            )

        now = self._clock()
        self._order_repo.save(
            ExecutionOrder(
                order_id=placement.order_id,
                signal_id=signal.id,
                portfolio_id=signal.portfolio_id,
                side=signal.side,
                order_type=order.order_type,
                quantity=order.quantity,
                price=order.price,
                status=placement.status,
                created_at=now,
            )
        )
        executed = self._signal_repo.apply_event(
            signal.id,
            SignalEvent.PLACED,
            now,
            note=f"Order {placement.order_id} ({order.order_type.value})",
            order_id=placement.order_id,
        )
        if executed is None:
            logger.warning(
                "Signal %s left PLACING before order %s was linked",
                signal.id, placement.order_id,
            )

        price_text = f"@ ₹{order.price}" if order.order_type is OrderType.LIMIT else "@ MARKET"
        message = (
            f"✅ Order placed: {signal.side.value} {order.quantity} {signal.symbol} "
            f"{price_text}\nOrder ID: {placement.order_id}"
        )
        if recipient:
            await self._send(recipient, message)
        logger.info("Signal %s executed as order %s", signal.id, placement.order_id)
        return ActionResult(Outcome.EXECUTED, message, executed, placement.order_id)

    async def _pre_order_checks(
        self, signal: Signal, order: OrderRequest, recipient: Optional[str]
    ) -> Optional[ActionResult]:
        if self._quotes is None:
            return None

        try:
            ltp = await self._quotes.get_last_price(signal.symbol, signal.exchange)
        except Exception as exc:
            logger.warning("Quote lookup failed for %s, continuing: %s", signal.symbol, exc)
            ltp = None

        if order.order_type is OrderType.LIMIT and ltp and ltp > 0:
            deviation = abs(order.price - ltp) / ltp
            if deviation > self._max_price_deviation:
                message = (
                    f"⚠️ Limit ₹{order.price} is {deviation * 100:.1f}% away from "
                    f"live price ₹{ltp} for {signal.symbol}. Order not placed."
                )
                if recipient:
                    await self._send(
                        recipient, message, signal.id, PRICE_DEVIATION_ACTIONS
                    )
                return ActionResult(Outcome.PRICE_DEVIATION, message, signal)

        if signal.side is Side.BUY:
            estimated = order.price if order.order_type is OrderType.LIMIT else ltp
            if estimated and estimated > 0:
                check = self._ledger.pre_order_check(signal, estimated)
                if not check.allowed:
                    message = f"⚠️ {check.reason}. Order not placed."
                    if recipient:
                        await self._send(recipient, message)
                    return ActionResult(Outcome.INSUFFICIENT_CAPITAL, message, signal)
        return None

    async def _placement_failed(
        self, signal: Signal, reason: str, recipient: Optional[str]
    ) -> ActionResult:
        rolled = self._signal_repo.apply_event(
            signal.id,
            SignalEvent.PLACE_FAILED,
            self._clock(),
            note=f"Placement failed: {reason}",
        )
        message = f"❌ Order failed for {signal.symbol}: {reason}"
        if recipient:
            await self._send(recipient, message, signal.id, RETRY_ACTIONS)
        return ActionResult(Outcome.FAILED, message, rolled)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileResult:
        """Poll every recent non-terminal order and apply its status."""
        now = self._clock()
        open_orders = self._order_repo.list_open(now - self._reconcile_lookback)
        counts = {outcome: 0 for outcome in OrderUpdateOutcome}
        errors = 0

        for index, order in enumerate(open_orders):
            if index and self._pacing_seconds > 0:
                await self._sleep(self._pacing_seconds)
            try:
                status = await self._gateway.get_order_status(
                    order.portfolio_id, order.order_id
                )
                outcome = await self.apply_order_update(status)
            except Exception as exc:
                errors += 1
                logger.error("Failed to check order %s: %s", order.order_id, exc)
                continue
            counts[outcome] += 1

        recovered = await self._release_stuck_placing(now)
        result = ReconcileResult(
            checked=len(open_orders),
            executed=counts[OrderUpdateOutcome.EXECUTED],
            rolled_back=counts[OrderUpdateOutcome.ROLLED_BACK],
            still_open=counts[OrderUpdateOutcome.OPEN],
            ignored=counts[OrderUpdateOutcome.IGNORED],
            errors=errors,
            recovered=recovered,
        )
        if open_orders:
            logger.info(
                "Reconciled %d orders: %d executed, %d rolled back, %d open, %d errors",
                result.checked, result.executed, result.rolled_back,
                result.still_open, result.errors,
            )
        return result

    async def _release_stuck_placing(self, now: datetime) -> int:
        """Roll back PLACING signals whose placement never produced a live order."""
        released = 0
        for signal in self._signal_repo.find_placing_before(now - self._placing_grace):
            entered = signal.updated_at or signal.created_at
            attempt = [
                o for o in self._order_repo.list_for_signal(signal.id)
                if o.created_at >= entered
            ]
            if any(
                normalize_broker_status(o.status) not in BROKER_FAILURE_STATUSES
                for o in attempt
            ):
                continue
            rolled = self._signal_repo.apply_event(
                signal.id,
                SignalEvent.PLACE_FAILED,
                now,
                note="Placement never completed, released by reconciliation",
            )
            if rolled is None:
                continue
            released += 1
            logger.warning("Signal %s stuck in PLACING since %s, released", signal.id, entered)
            await self._notify_portfolio(
                signal.portfolio_id,
                f"❌ Order for {signal.symbol} was not placed. Signal reset to PENDING.",
                signal.id,
                RETRY_ACTIONS,
            )
        return released

    async def apply_order_update(self, status: BrokerOrderStatus) -> OrderUpdateOutcome:
        """Apply one authoritative broker status (polled or pushed)."""
        order = self._order_repo.get(status.order_id)
        if order is None:
            logger.warning("Update for unknown order %s ignored", status.order_id)
            return OrderUpdateOutcome.IGNORED

        now = self._clock()
        if status.is_success:
            if status.filled_quantity <= 0:
                # Bare completion: the whole order filled.
                status = replace(status, filled_quantity=order.quantity)
            self._order_repo.update_status(status, now)
            await self._confirm_fill(order, status)
            return OrderUpdateOutcome.EXECUTED

        if status.is_failure:
            if order.is_terminal:
                logger.info(
                    "Order %s already %s, ignoring %s",
                    order.order_id, order.status, status.normalized,
                )
                return OrderUpdateOutcome.IGNORED
            self._order_repo.update_status(status, now)
            return await self._roll_back(order, status)

        self._order_repo.update_status(status, now)
        return OrderUpdateOutcome.OPEN

    async def _confirm_fill(
        self, order: ExecutionOrder, status: BrokerOrderStatus
    ) -> None:
        now = self._clock()
        signal = self._signal_repo.get(order.signal_id)
        if signal is not None and signal.status is SignalStatus.PLACING:
            signal = self._signal_repo.apply_event(
                signal.id,
                SignalEvent.PLACED,
                now,
                note=f"Order {order.order_id} confirmed",
                order_id=order.order_id,
            ) or signal

        filled = status.filled_quantity
        if (
            signal is not None
            and signal.order_id == order.order_id
            and filled > 0
            and filled != signal.quantity
        ):
            self._signal_repo.update_quantity(signal.id, filled, now)

        price = status.average_price or order.price
        if filled <= 0 or not price:
            logger.warning(
                "Order %s complete without fill details (qty=%s avg=%s)",
                order.order_id, filled, status.average_price,
            )
            return

        applied = self._ledger.apply_fill(
            Fill(
                order_id=order.order_id,
                portfolio_id=order.portfolio_id,
                side=order.side,
                filled_quantity=filled,
                average_price=price,
            ),
            now,
        )
        if applied:
            symbol = signal.symbol if signal is not None else order.order_id
            await self._notify_portfolio(
                order.portfolio_id,
                f"✅ Order filled: {order.side.value} {filled} {symbol} "
                f"@ ₹{price}\nOrder ID: {order.order_id}",
            )

    async def _roll_back(
        self, order: ExecutionOrder, status: BrokerOrderStatus
    ) -> OrderUpdateOutcome:
        reason = status.message or status.normalized
        rolled = self._signal_repo.apply_event(
            order.signal_id,
            SignalEvent.ROLLBACK,
            self._clock(),
            note=f"Broker {status.normalized}: {reason}",
            expected_order_id=order.order_id,
        )
        if rolled is None:
            logger.info(
                "Order %s %s but signal %s is no longer linked to it",
                order.order_id, status.normalized, order.signal_id,
            )
            return OrderUpdateOutcome.IGNORED

        await self._notify_portfolio(
            order.portfolio_id,
            f"🔴 Order {status.normalized.upper()} for {rolled.symbol}: {reason}\n"
            "Signal reset to PENDING.",
            rolled.id,
            RETRY_ACTIONS,
        )
        return OrderUpdateOutcome.ROLLED_BACK

    # ------------------------------------------------------------------
    # Messaging helpers (never fail the caller)
    # ------------------------------------------------------------------

    async def _notify_portfolio(
        self,
        portfolio_id: int,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> None:
        portfolio = self._portfolio_repo.get(portfolio_id)
        if portfolio is not None and portfolio.recipient:
            await self._send(portfolio.recipient, text, signal_id, actions)

    async def _send(
        self,
        recipient: str,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> None:
        try:
            await self._channel.send_text(recipient, text, signal_id, actions)
        except Exception as exc:
            logger.warning("Failed to send message to %s: %s", recipient, exc)

    async def _mark_handled(self, recipient: str, message_ref: str, label: str) -> None:
        try:
            await self._channel.mark_handled(recipient, message_ref, label)
        except Exception as exc:
            logger.warning("Failed to update buttons of message %s: %s", message_ref, exc)
