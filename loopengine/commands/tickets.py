"""
le new/list/show/move/reorder/edit/delete - Ticket board commands.
"""

from datetime import datetime

from loopengine.tickets.models import Ticket
from loopengine.workflow.engine import LoopEngine
from loopengine.workflow.state_machine import TicketStatus, allowed_targets


def _short(ticket_id: str) -> str:
    return ticket_id[:8]


def _format_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M")


def _prd_state(ticket: Ticket) -> str:
    if ticket.prd is None:
        return "none"
    return "approved" if ticket.prd.approved else "awaiting approval"


def _print_row(ticket: Ticket):
    title = ticket.title[:44] + "..." if len(ticket.title) > 44 else ticket.title
    print(f"  {_short(ticket.id):<10} {ticket.priority.value:<9} {ticket.type.value:<8} {title}")


def cmd_new(args, engine: LoopEngine) -> int:
    """Create a ticket in the backlog."""
    request = {
        "title": args.title,
        "description": args.description or "",
        "acceptanceCriteria": args.criteria or [],
        "type": args.type,
        "priority": args.priority,
    }
    if args.project:
        request["projectId"] = args.project

    ticket = engine.store.create(request)
    print(f"Created ticket {ticket.id}")
    print(f"  Title:  {ticket.title}")
    print(f"  Status: {ticket.status.value}")
    print()
    print(f"Next: le prd generate {_short(ticket.id)}")
    return 0


def cmd_list(args, engine: LoopEngine) -> int:
    """List tickets grouped by board column."""
    statuses = [TicketStatus(args.status)] if args.status else list(TicketStatus)

    total = 0
    for status in statuses:
        column = engine.store.get_column(status)
        total += len(column)
        if not column and not args.status:
            continue
        print(f"{status.value} ({len(column)})")
        print("-" * 60)
        for ticket in column:
            _print_row(ticket)
        print()

    print(f"{total} ticket(s)")
    return 0


def cmd_show(args, engine: LoopEngine) -> int:
    """Show one ticket in full."""
    ticket = engine.store.get_by_id(args.id)

    print(f"Ticket: {ticket.id}")
    print("=" * 60)
    print(f"Title:      {ticket.title}")
    print(f"Status:     {ticket.status.value}")
    print(f"Type:       {ticket.type.value}")
    print(f"Priority:   {ticket.priority.value}")
    if ticket.project_id:
        print(f"Project:    {ticket.project_id}")
    print(f"PRD:        {_prd_state(ticket)}")
    print(f"Workspace:  {ticket.worktree_path or '-'}")
    print(f"Created:    {_format_ms(ticket.created_at)}")
    print(f"Updated:    {_format_ms(ticket.updated_at)}")
    print()

    if ticket.description:
        print("Description")
        print("-" * 40)
        print(ticket.description)
        print()

    if ticket.acceptance_criteria:
        print("Acceptance Criteria")
        print("-" * 40)
        for criterion in ticket.acceptance_criteria:
            print(f"  - {criterion}")
        print()

    next_statuses = sorted(s.value for s in allowed_targets(ticket.status))
    print(f"Can move to: {', '.join(next_statuses) or '(terminal)'}")
    print()

    print("History")
    print("-" * 40)
    for event in ticket.history:
        change = f" {event.from_status} -> {event.to_status}" if event.to_status else ""
        print(f"  {_format_ms(event.timestamp)}  {event.action}{change}")
    return 0


def cmd_move(args, engine: LoopEngine) -> int:
    """Move a ticket to another column (end of that column)."""
    before = engine.store.get_by_id(args.id)
    ticket = engine.store.transition(args.id, args.status)
    print(f"Moved {_short(ticket.id)}: {before.status.value} -> {ticket.status.value}")
    return 0


def cmd_reorder(args, engine: LoopEngine) -> int:
    """Place a ticket at a position within a column."""
    columns = engine.store.reorder(args.id, args.status, args.index)
    for status, tickets in columns.items():
        print(f"{status.value}")
        print("-" * 60)
        for ticket in tickets:
            marker = "*" if ticket.id == args.id else " "
            print(f" {marker}{ticket.order:>3}  {_short(ticket.id):<10} {ticket.title}")
        print()
    return 0


def cmd_edit(args, engine: LoopEngine) -> int:
    """Update descriptive ticket fields."""
    updates = {}
    if args.title is not None:
        updates["title"] = args.title
    if args.description is not None:
        updates["description"] = args.description
    if args.criteria is not None:
        updates["acceptanceCriteria"] = args.criteria
    if args.type is not None:
        updates["type"] = args.type
    if args.priority is not None:
        updates["priority"] = args.priority
    if args.project is not None:
        updates["projectId"] = args.project

    if not updates:
        print("ERROR: Nothing to change. Pass at least one of --title, --description, "
              "--criteria, --type, --priority, --project")
        return 2

    ticket = engine.store.update(args.id, updates)
    print(f"Updated {_short(ticket.id)}: {', '.join(sorted(updates))}")
    return 0


def cmd_delete(args, engine: LoopEngine) -> int:
    if engine.supervisor.is_running(args.id):
        print(f"ERROR: Ticket '{args.id}' has a running agent; stop it first")
        return 2
    engine.store.delete(args.id)
    print(f"Deleted ticket {args.id}")
    return 0
