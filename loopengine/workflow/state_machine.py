"""Ticket status enum, transition validation, and lookup helpers.

All transition logic lives in fsm.py - this module provides:
- TicketStatus enum for type safety
- allowed_targets() mapping each status to its allowed-next set
- apply_transition() which runs the FSM and raises InvalidTransition

Usage:
    from loopengine.workflow.state_machine import apply_transition, TicketStatus

    new_status = apply_transition("t1", "in_review", TicketStatus.IN_PROGRESS)
"""

import logging
from enum import Enum

from transitions import MachineError

from loopengine.lib.validate import ValidationError
from loopengine.workflow.fsm import TRIGGER_FOR, TicketFSM

logger = logging.getLogger(__name__)


class TicketStatus(Enum):
    """All valid ticket statuses, in board column order.

    Values match FSM state strings.
    """

    BACKLOG = "backlog"
    UP_NEXT = "up_next"
    IN_REVIEW = "in_review"
    IN_PROGRESS = "in_progress"
    IN_TESTING = "in_testing"

    # Terminal
    COMPLETED = "completed"


class InvalidTransition(ValidationError):
    """Raised when attempting a status change the transition table forbids."""

    def __init__(self, from_state: str, to_state: TicketStatus, ticket_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.ticket_id = ticket_id
        super().__init__(
            "transition",
            f"Invalid transition: {from_state} -> {to_state.value}"
            + (f" (ticket: {ticket_id})" if ticket_id else ""),
        )


def parse_status(status_str: str | None) -> TicketStatus | None:
    """Parse a status string into TicketStatus.

    Returns None if status is unknown.
    """
    if status_str is None:
        return None
    for status in TicketStatus:
        if status.value == status_str:
            return status
    return None


def coerce_status(status: TicketStatus | str) -> TicketStatus:
    """Accept either an enum member or its string value.

    Raises:
        ValueError: If the string names no status
    """
    if isinstance(status, TicketStatus):
        return status
    parsed = parse_status(status)
    if parsed is None:
        raise ValueError(f"Unknown ticket status: {status!r}")
    return parsed


def allowed_targets(status: TicketStatus) -> frozenset[TicketStatus]:
    """Statuses reachable from `status` in one transition."""
    match status:
        case TicketStatus.BACKLOG:
            return frozenset({TicketStatus.UP_NEXT})
        case TicketStatus.UP_NEXT:
            return frozenset({TicketStatus.IN_REVIEW, TicketStatus.BACKLOG})
        case TicketStatus.IN_REVIEW:
            return frozenset({TicketStatus.IN_PROGRESS, TicketStatus.BACKLOG})
        case TicketStatus.IN_PROGRESS:
            return frozenset({TicketStatus.IN_TESTING})
        case TicketStatus.IN_TESTING:
            return frozenset({TicketStatus.COMPLETED, TicketStatus.IN_PROGRESS})
        case TicketStatus.COMPLETED:
            return frozenset()
    raise ValueError(f"Unhandled ticket status: {status}")


VALID_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    status: allowed_targets(status) for status in TicketStatus
}


def can_transition(current: TicketStatus | str, target: TicketStatus | str) -> bool:
    """Check if current -> target is in the transition table."""
    current_status = parse_status(current) if isinstance(current, str) else current
    target_status = parse_status(target) if isinstance(target, str) else target
    if current_status is None or target_status is None:
        return False
    return target_status in allowed_targets(current_status)


def apply_transition(ticket_id: str, current: str, to_status: TicketStatus) -> TicketStatus:
    """Run current -> to_status through the FSM.

    Returns the new status. Nothing is persisted here; the caller records it.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    trigger = TRIGGER_FOR.get((current, to_status.value))
    if trigger is None:
        raise InvalidTransition(current, to_status, ticket_id)

    fsm = TicketFSM(ticket_id, current)
    if not fsm.can(trigger):
        raise InvalidTransition(current, to_status, ticket_id)
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_status, ticket_id) from e

    return TicketStatus(fsm.state)
