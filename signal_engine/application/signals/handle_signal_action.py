"""
Use case: Handle a button press on a delivered signal.

Input:  ActionEvent (signal id, action, recipient, message ref, actor)
Output: ActionResult
Side effects: ACK / SNOOZE / DISMISS transition the signal with an audit
record; EXECUTE and RETRY_MARKET are delegated to the ExecutionCoordinator.
A press against a signal that already moved on is reported as
ALREADY_HANDLED and changes nothing.
"""

import logging

from signal_engine.application.signals.dtos import ActionEvent, ActionResult, Outcome
from signal_engine.application.signals.execute_signal import ExecutionCoordinator
from signal_engine.domain.signals.entities import UserAction
from signal_engine.domain.signals.errors import InvalidTransitionError
from signal_engine.domain.signals.ports import (
    Clock,
    NotificationChannel,
    SignalRepository,
    utc_now,
)
from signal_engine.domain.signals.state_machine import SignalEvent, transition

logger = logging.getLogger(__name__)

_EVENTS = {
    UserAction.ACK: SignalEvent.ACK,
    UserAction.SNOOZE: SignalEvent.SNOOZE,
    UserAction.DISMISS: SignalEvent.DISMISS,
}

_HANDLED_LABELS = {
    UserAction.ACK: "✅ Acknowledged",
    UserAction.SNOOZE: "⏰ Snoozed 30m",
    UserAction.DISMISS: "❌ Dismissed",
}


class SignalActionDispatcher:
    """Routes inbound actions to the state machine or the coordinator."""

    def __init__(
        self,
        signal_repo: SignalRepository,
        coordinator: ExecutionCoordinator,
        channel: NotificationChannel,
        clock: Clock = utc_now,
    ) -> None:
        self._signal_repo = signal_repo
        self._coordinator = coordinator
        self._channel = channel
        self._clock = clock

    async def handle(self, event: ActionEvent) -> ActionResult:
        logger.info(
            "Action %s on signal %s (actor=%s)",
            event.action.value, event.signal_id, event.actor,
        )
        if event.action in (UserAction.EXECUTE, UserAction.RETRY_MARKET):
            return await self._coordinator.execute(
                event.signal_id,
                recipient=event.recipient,
                message_ref=event.message_ref,
                force_market=event.action is UserAction.RETRY_MARKET,
            )

        signal = self._signal_repo.get(event.signal_id)
        if signal is None:
            return ActionResult(Outcome.NOT_FOUND, f"Signal {event.signal_id} not found")

        sm_event = _EVENTS[event.action]
        try:
            transition(signal.status, sm_event)
        except InvalidTransitionError:
            return ActionResult(
                Outcome.ALREADY_HANDLED,
                f"Signal already {signal.status.value.lower()}",
                signal,
            )

        updated = self._signal_repo.apply_event(
            signal.id,
            sm_event,
            self._clock(),
            note=f"by {event.actor}" if event.actor else None,
        )
        if updated is None:
            return ActionResult(
                Outcome.ALREADY_HANDLED, "Signal is already being handled", signal
            )

        label = _HANDLED_LABELS[event.action]
        if event.recipient and event.message_ref:
            try:
                await self._channel.mark_handled(
                    event.recipient, event.message_ref, label
                )
            except Exception as exc:
                logger.warning(
                    "Failed to update buttons of message %s: %s", event.message_ref, exc
                )
        return ActionResult(Outcome.OK, f"{label}: {updated.symbol}", updated)
