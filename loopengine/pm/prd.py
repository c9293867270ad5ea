"""
PRD gate: generate -> approve/reject, and the execution check.

A ticket may be executed only while it carries a PRD whose approved flag is
set. Rejecting keeps the content so it can be re-approved or regenerated.
"""

import logging
from typing import Callable, Optional

from loopengine.lib.agents_config import AgentsConfig, get_stage_command
from loopengine.lib.prompts import build_section, render_prompt
from loopengine.pm.claude_utils import run_claude, strip_markdown_fences
from loopengine.tickets.models import PRD, Ticket
from loopengine.tickets.store import TicketNotFound, TicketStore

logger = logging.getLogger(__name__)

# prompt -> generated PRD markdown; raises PRDGenerationError on failure
PRDGenerator = Callable[[str], str]


class GateError(Exception):
    """Execution refused: no approved PRD, or no workspace."""

    def __init__(self, ticket_id: str, reason: str):
        self.ticket_id = ticket_id
        self.reason = reason
        super().__init__(f"Ticket '{ticket_id}': {reason}")


class PRDGenerationError(Exception):
    """The external generator failed or returned nothing."""
    pass


def can_execute(ticket: Ticket) -> bool:
    return ticket.prd is not None and ticket.prd.approved


def require_approved_prd(ticket: Ticket) -> PRD:
    """Return the ticket's PRD, or raise GateError if it isn't approved."""
    if ticket.prd is None:
        raise GateError(ticket.id, "has no PRD")
    if not ticket.prd.approved:
        raise GateError(ticket.id, "PRD not approved")
    return ticket.prd


def build_prd_prompt(ticket: Ticket) -> str:
    """Render the full generation prompt (instructions + ticket)."""
    system = render_prompt("prd_system")
    message = render_prompt(
        "prd_ticket",
        title=ticket.title,
        description=ticket.description,
        acceptance_criteria_section=build_section(ticket.acceptance_criteria, "## Acceptance Criteria"),
        ticket_type=ticket.type.value,
        priority=ticket.priority.value,
    )
    return f"{system}\n---\n\n{message}"


def command_generator(config: AgentsConfig, timeout: int = 300) -> PRDGenerator:
    """Build a generator that runs the prd_generate stage command."""
    cmd = get_stage_command(config, "prd_generate")

    def generate(prompt: str) -> str:
        ok, output = run_claude(cmd, prompt, timeout=timeout)
        if not ok:
            raise PRDGenerationError(output)
        return output

    return generate


class PRDGate:
    def __init__(self, store: TicketStore, generator: Optional[PRDGenerator] = None):
        self.store = store
        self.generator = generator or command_generator(AgentsConfig())

    def _get(self, ticket_id: str) -> Ticket:
        ticket = self.store.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def generate(self, ticket_id: str) -> PRD:
        """Generate a PRD for the ticket and store it unapproved.

        Raises:
            TicketNotFound: If no such ticket
            PRDGenerationError: If generation fails; the existing PRD is untouched
        """
        ticket = self._get(ticket_id)
        logger.info(f"[PRD] {ticket_id}: generating PRD")

        content = strip_markdown_fences(self.generator(build_prd_prompt(ticket)))
        if not content:
            raise PRDGenerationError(f"Generator returned an empty PRD for ticket '{ticket_id}'")

        prd = self.store.set_prd(ticket_id, content, approved=False)
        logger.info(f"[PRD] {ticket_id}: PRD generated ({len(content)} chars), awaiting approval")
        return prd

    def _set_approval(self, ticket_id: str, approved: bool) -> Ticket:
        self._get(ticket_id)
        if not self.store.approve_prd(ticket_id, approved):
            raise GateError(ticket_id, "has no PRD to approve or reject")
        logger.info(f"[PRD] {ticket_id}: PRD {'approved' if approved else 'rejected'}")
        return self._get(ticket_id)

    def approve(self, ticket_id: str) -> Ticket:
        return self._set_approval(ticket_id, True)

    def reject(self, ticket_id: str) -> Ticket:
        return self._set_approval(ticket_id, False)

    def can_execute(self, ticket_id: str) -> bool:
        return can_execute(self._get(ticket_id))
