"""
Loop engine facade.

Wires the ticket store, workspace provisioning, the PRD gate and the agent
supervisor behind one object, and installs the auto-transition rule:

    agent exits (running -> not running)  =>  in_progress -> in_testing

The rule is an ordinary status subscriber; hosts subscribe alongside it.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from loopengine.agents.supervisor import AgentProcessSupervisor, RunStatus
from loopengine.lib.agents_config import load_agents_config
from loopengine.lib.config import EngineConfig, load_engine_config
from loopengine.pm.prd import (
    GateError,
    PRDGate,
    PRDGenerator,
    command_generator,
    require_approved_prd,
)
from loopengine.runner.worktree import WorktreeProvisioner
from loopengine.tickets.models import Ticket
from loopengine.tickets.store import TicketNotFound, TicketStore
from loopengine.workflow.broadcaster import StatusBroadcaster, StatusEvent
from loopengine.workflow.state_machine import InvalidTransition, TicketStatus

logger = logging.getLogger(__name__)


class AutoTransitionRule:
    """Moves a ticket from in_progress to in_testing when its agent stops.

    Fires once per running -> not-running edge. Repeated not-running events
    (stop, then the real exit) are ignored, as are tickets that are no longer
    in_progress.
    """

    def __init__(self, store: TicketStore, broadcaster: StatusBroadcaster):
        self.store = store
        self.broadcaster = broadcaster
        self._running: dict[str, bool] = {}
        self._lock = threading.Lock()

    def __call__(self, event: StatusEvent) -> None:
        with self._lock:
            was_running = self._running.get(event.ticket_id, False)
            self._running[event.ticket_id] = event.running

        if event.running or not was_running:
            return

        ticket = self.store.get_by_id(event.ticket_id)
        if ticket is None:
            logger.debug(f"[STATE] {event.ticket_id}: run ended for a deleted ticket")
            return
        if ticket.status != TicketStatus.IN_PROGRESS:
            logger.debug(f"[STATE] {event.ticket_id}: run ended in {ticket.status.value}, no transition")
            return

        try:
            updated = self.store.transition(event.ticket_id, TicketStatus.IN_TESTING)
        except (InvalidTransition, TicketNotFound) as e:
            # Ticket moved or vanished between the check and the transition
            logger.info(f"[STATE] {event.ticket_id}: auto-transition skipped: {e}")
            return

        logger.info(f"[STATE] {event.ticket_id}: in_progress -> in_testing (agent finished)")
        self.broadcaster.publish_ticket(updated)


class LoopEngine:
    def __init__(
        self,
        config: EngineConfig,
        store: TicketStore,
        broadcaster: StatusBroadcaster,
        supervisor: AgentProcessSupervisor,
        provisioner: WorktreeProvisioner,
        prd_gate: PRDGate,
    ):
        self.config = config
        self.store = store
        self.broadcaster = broadcaster
        self.supervisor = supervisor
        self.provisioner = provisioner
        self.prd_gate = prd_gate

        self.auto_transition = AutoTransitionRule(store, broadcaster)
        broadcaster.subscribe(self.auto_transition)

    @classmethod
    def create(
        cls,
        home: Optional[Path | str] = None,
        generator: Optional[PRDGenerator] = None,
    ) -> "LoopEngine":
        """Build the default component graph for an engine home directory."""
        config = load_engine_config(home)
        agents_config = load_agents_config(config.home)

        store = TicketStore(config.tickets_path, debounce_seconds=config.flush_debounce_seconds)
        broadcaster = StatusBroadcaster()
        supervisor = AgentProcessSupervisor(
            broadcaster.publish,
            agents_config=agents_config,
            prd_file=config.prd_file,
            max_log_length=config.max_log_length,
            kill_grace_seconds=config.kill_grace_seconds,
        )
        prd_gate = PRDGate(
            store,
            generator=generator or command_generator(agents_config, timeout=config.prd_timeout),
        )
        return cls(
            config=config,
            store=store,
            broadcaster=broadcaster,
            supervisor=supervisor,
            provisioner=WorktreeProvisioner(config.manifest_file),
            prd_gate=prd_gate,
        )

    def _get(self, ticket_id: str) -> Ticket:
        ticket = self.store.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def execute(self, ticket_id: str, worktree_base_path: Optional[str] = None) -> Ticket:
        """Provision the ticket's workspace if needed and start its agent.

        Returns:
            The ticket as it was handed to the supervisor

        Raises:
            TicketNotFound: If no such ticket
            GateError: If the PRD isn't approved, or no workspace can be derived
            ProvisioningError: If the workspace can't be created
        """
        ticket = self._get(ticket_id)
        require_approved_prd(ticket)

        if worktree_base_path and not ticket.worktree_path:
            ticket = self.store.set_worktree_path(ticket_id, worktree_base_path)

        if not ticket.worktree_path:
            if not ticket.worktree_base_path:
                raise GateError(ticket_id, "has no workspace and no base directory to create one in")
            path = self.provisioner.provision(ticket)
            ticket = self.store.set_worktree_path(ticket_id, ticket.worktree_base_path, str(path))
        else:
            logger.debug(f"[WORKTREE] {ticket_id}: reusing {ticket.worktree_path}")

        self.supervisor.execute(ticket)
        return ticket

    def status(self, ticket_id: str) -> RunStatus:
        return self.supervisor.get_status(ticket_id)

    def stop(self, ticket_id: str) -> None:
        self.supervisor.stop(ticket_id)

    def wait(self, ticket_id: str, timeout: Optional[float] = None) -> bool:
        return self.supervisor.wait(ticket_id, timeout)

    def shutdown(self) -> None:
        """Stop every live run and write pending ticket changes."""
        self.supervisor.stop_all()
        self.store.flush()
