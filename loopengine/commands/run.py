"""
le run/status - Execute a ticket's agent and watch it.

`le run` stays in the foreground: it prints status events as they arrive and
returns once the agent exits. Ctrl-C stops the agent (SIGTERM, then SIGKILL).
"""

from loopengine.lib.agents_config import validate_stage_binaries
from loopengine.notifications import RunNotifier
from loopengine.pm.prd import require_approved_prd
from loopengine.tickets.models import Ticket
from loopengine.workflow.broadcaster import StatusEvent
from loopengine.workflow.engine import LoopEngine
from loopengine.workflow.state_machine import TicketStatus

# Extra seconds to wait for the exit event after the kill grace period
STOP_WAIT_MARGIN = 5.0


def cmd_run(args, engine: LoopEngine) -> int:
    """Start the agent for a ticket and follow it until it exits."""
    ticket_id = args.id
    ticket = engine.store.get_by_id(ticket_id)
    require_approved_prd(ticket)

    check = validate_stage_binaries(engine.supervisor.agents_config, ["execute"])
    if not check.ok:
        print(f"ERROR: {check.error_message}")
        return 2

    if ticket.status != TicketStatus.IN_PROGRESS:
        print(f"Note: ticket is in {ticket.status.value}; it moves to in_testing "
              f"automatically only when run from in_progress")

    def on_status(event: StatusEvent):
        if event.ticket_id != ticket_id:
            return
        state = "running" if event.running else "stopped"
        print(f"[{state}] iteration {event.iteration}", flush=True)

    def on_ticket(updated: Ticket):
        if updated.id == ticket_id:
            print(f"Ticket moved to {updated.status.value}", flush=True)

    unsubscribers = [
        engine.broadcaster.subscribe(on_status),
        engine.broadcaster.subscribe_tickets(on_ticket),
    ]
    if args.notify:
        unsubscribers.append(engine.broadcaster.subscribe(RunNotifier(lambda _id: ticket.title)))

    try:
        ticket = engine.execute(ticket_id, args.base_dir)
        print(f"Workspace: {ticket.worktree_path}")
        try:
            engine.wait(ticket_id)
        except KeyboardInterrupt:
            print("\nStopping agent...")
            engine.stop(ticket_id)
            engine.wait(ticket_id, timeout=engine.config.kill_grace_seconds + STOP_WAIT_MARGIN)
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    status = engine.status(ticket_id)
    if status.log:
        print()
        print("Agent output (tail)")
        print("-" * 60)
        print(status.log)
    print(f"Finished after {status.iteration} iteration(s)")
    return 0


def cmd_status(args, engine: LoopEngine) -> int:
    """Show a ticket's board status and this process's view of its run."""
    ticket = engine.store.get_by_id(args.id)
    status = engine.status(args.id)

    print(f"Ticket:     {ticket.title}")
    print(f"Status:     {ticket.status.value}")
    print(f"PRD:        {'approved' if ticket.prd and ticket.prd.approved else 'not approved'}")
    print(f"Workspace:  {ticket.worktree_path or '-'}")
    print(f"Running:    {'yes' if status.running else 'no'}")
    print(f"Iteration:  {status.iteration}")
    return 0
