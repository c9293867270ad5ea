"""Ticket status state machine using the transitions library.

The transition table is exhaustive: any (source, dest) pair not listed here
is rejected. `completed` is terminal.

Usage:
    from loopengine.workflow.fsm import TicketFSM

    fsm = TicketFSM("t1", "in_progress")
    fsm.submit_for_testing()  # in_progress -> in_testing
"""

import logging

from transitions import Machine

logger = logging.getLogger(__name__)


# State values must match TicketStatus enum
STATES = [
    "backlog",
    "up_next",
    "in_review",
    "in_progress",
    "in_testing",
    "completed",
]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Grooming
    {"trigger": "queue", "source": "backlog", "dest": "up_next"},
    {"trigger": "demote", "source": "up_next", "dest": "backlog"},

    # PRD review
    {"trigger": "start_review", "source": "up_next", "dest": "in_review"},
    {"trigger": "demote", "source": "in_review", "dest": "backlog"},

    # Agent run
    {"trigger": "start_work", "source": "in_review", "dest": "in_progress"},
    {"trigger": "submit_for_testing", "source": "in_progress", "dest": "in_testing"},

    # Verification
    {"trigger": "complete", "source": "in_testing", "dest": "completed"},
    {"trigger": "reopen", "source": "in_testing", "dest": "in_progress"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class TicketFSM:
    """State machine for one ticket's status.

    Wraps the transitions library with ticket-specific logic:
    - Starts from the ticket's recorded status
    - Logs all transitions

    The FSM holds no persistence of its own; the ticket store owns the record.
    """

    def __init__(self, ticket_id: str, status: str):
        self.ticket_id = ticket_id

        if status not in STATES:
            logger.warning(f"[FSM] {ticket_id}: Unknown status '{status}', defaulting to 'backlog'")
            status = "backlog"

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=status,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.ticket_id}: {from_state} -> {to_state} ({trigger})")

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
