"""
Signal lifecycle state machine.

Every transition is a pure function of (current status, event). Pairs
that are not listed in the transition table raise InvalidTransitionError,
so callers never write a status unconditionally.
"""

from enum import Enum

from signal_engine.domain.signals.entities import ActionType, SignalStatus
from signal_engine.domain.signals.errors import InvalidTransitionError


class SignalEvent(Enum):
    """Events that move a signal between states."""

    ACK = "ACK"
    SNOOZE = "SNOOZE"
    DISMISS = "DISMISS"
    EXECUTE = "EXECUTE"
    PLACED = "PLACED"
    PLACE_FAILED = "PLACE_FAILED"
    EXPIRE = "EXPIRE"
    ROLLBACK = "ROLLBACK"
    DELIVERED = "DELIVERED"


_P = SignalStatus.PENDING
_A = SignalStatus.ACKED
_S = SignalStatus.SNOOZED
_PL = SignalStatus.PLACING
_E = SignalStatus.EXECUTED

TRANSITIONS: dict[SignalEvent, tuple[frozenset[SignalStatus], SignalStatus]] = {
    SignalEvent.ACK: (frozenset({_P, _S}), SignalStatus.ACKED),
    SignalEvent.SNOOZE: (frozenset({_P, _S}), SignalStatus.SNOOZED),
    SignalEvent.DISMISS: (frozenset({_P, _S, _A}), SignalStatus.DISMISSED),
    SignalEvent.EXECUTE: (frozenset({_P, _S, _A}), SignalStatus.PLACING),
    SignalEvent.PLACED: (frozenset({_PL}), SignalStatus.EXECUTED),
    SignalEvent.PLACE_FAILED: (frozenset({_PL}), SignalStatus.PENDING),
    SignalEvent.EXPIRE: (frozenset({_P, _S}), SignalStatus.EXPIRED),
    SignalEvent.ROLLBACK: (frozenset({_P, _A, _S, _PL, _E}), SignalStatus.PENDING),
    SignalEvent.DELIVERED: (frozenset({_S}), SignalStatus.PENDING),
}

AUDIT_ACTIONS: dict[SignalEvent, ActionType] = {
    SignalEvent.ACK: ActionType.ACK,
    SignalEvent.SNOOZE: ActionType.SNOOZE_30M,
    SignalEvent.DISMISS: ActionType.DISMISS,
    SignalEvent.PLACED: ActionType.EXECUTE,
    SignalEvent.PLACE_FAILED: ActionType.ROLLBACK,
    SignalEvent.EXPIRE: ActionType.EXPIRE,
    SignalEvent.ROLLBACK: ActionType.ROLLBACK,
}


def allowed_sources(event: SignalEvent) -> frozenset[SignalStatus]:
    """Return the statuses from which the event is accepted."""
    return TRANSITIONS[event][0]


def can_transition(status: SignalStatus, event: SignalEvent) -> bool:
    return status in allowed_sources(event)


def transition(status: SignalStatus, event: SignalEvent) -> SignalStatus:
    """Return the status reached by applying event to status.

    Raises:
        InvalidTransitionError: If the pair is not in the transition table.
    """
    sources, target = TRANSITIONS[event]
    if status not in sources:
        raise InvalidTransitionError(status.value, event.value)
    return target
