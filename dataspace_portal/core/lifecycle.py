"""Participant lifecycle transition table.

``current_operation`` only moves through ``transition()``; each allowed move
names the Operation event type recorded alongside it.
"""
from __future__ import annotations
import enum
from typing import NamedTuple, Optional

from .errors import NotActiveError
from .models import OperationEventType, ParticipantState


class LifecycleEvent(str, enum.Enum):
    PROVISION_REQUESTED = "PROVISION_REQUESTED"
    PROVISION_SUCCEEDED = "PROVISION_SUCCEEDED"
    PROVISION_FAILED = "PROVISION_FAILED"
    DEPROVISION_SUCCEEDED = "DEPROVISION_SUCCEEDED"
    DEPROVISION_FAILED = "DEPROVISION_FAILED"


class Transition(NamedTuple):
    state: ParticipantState
    audit_event: OperationEventType


S = ParticipantState
E = LifecycleEvent
A = OperationEventType

# (current state or None for a new participant, event) -> (new state, audit event)
TRANSITIONS: dict[tuple[Optional[ParticipantState], LifecycleEvent], Transition] = {
    (None, E.PROVISION_REQUESTED): Transition(S.PROVISION_IN_PROGRESS, A.PROVISION_STARTED),
    (S.PROVISION_IN_PROGRESS, E.PROVISION_SUCCEEDED): Transition(S.ACTIVE, A.PROVISION_COMPLETED),
    (S.PROVISION_IN_PROGRESS, E.PROVISION_FAILED): Transition(S.PROVISION_FAILED, A.PROVISION_FAILED),
    # Deprovisioning is synchronous, so the completed state is recorded with the started event
    (S.ACTIVE, E.DEPROVISION_SUCCEEDED): Transition(S.DEPROVISION_COMPLETED, A.DEPROVISION_STARTED),
    (S.ACTIVE, E.DEPROVISION_FAILED): Transition(S.DEPROVISION_FAILED, A.DEPROVISION_FAILED),
}

del S, E, A


def _validate_table() -> None:
    for (source, event), (target, audit_event) in TRANSITIONS.items():
        if source is not None and not isinstance(source, ParticipantState):
            raise TypeError(f"Invalid source state {source!r}")
        if not isinstance(event, LifecycleEvent):
            raise TypeError(f"Invalid event {event!r}")
        if not isinstance(target, ParticipantState):
            raise TypeError(f"Invalid target state {target!r}")
        if not isinstance(audit_event, OperationEventType):
            raise TypeError(f"Invalid audit event {audit_event!r}")
    unused = set(LifecycleEvent) - {event for _, event in TRANSITIONS}
    if unused:
        raise RuntimeError(f"Lifecycle events without a transition: {sorted(e.value for e in unused)}")


_validate_table()


def transition(state: Optional[ParticipantState], event: LifecycleEvent) -> Transition:
    """Look up the move for ``event`` from ``state``.

    Raises:
        NotActiveError: If the pair is not in the table
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        current = state.value if state is not None else None
        raise NotActiveError(
            f"Cannot apply {event.value} to participant in state {current}",
            {"state": current, "event": event.value},
        ) from None


def can_transition(state: Optional[ParticipantState], event: LifecycleEvent) -> bool:
    return (state, event) in TRANSITIONS
