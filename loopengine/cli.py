#!/usr/bin/env python3
"""Loop Engine CLI entrypoint (`le`)."""

import argparse
import logging
import sys

from loopengine.commands import prd as cmd_prd_module
from loopengine.commands import run as cmd_run_module
from loopengine.commands import tickets as cmd_tickets_module
from loopengine.lib.validate import ValidationError
from loopengine.pm.prd import GateError, PRDGenerationError
from loopengine.runner.worktree import ProvisioningError
from loopengine.tickets.models import TicketPriority, TicketType
from loopengine.tickets.store import TicketNotFound
from loopengine.workflow.engine import LoopEngine
from loopengine.workflow.state_machine import TicketStatus

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

STATUS_CHOICES = [s.value for s in TicketStatus]
TYPE_CHOICES = [t.value for t in TicketType]
PRIORITY_CHOICES = [p.value for p in TicketPriority]


def configure_logging(verbosity: int):
    """WARNING by default, INFO with -v, DEBUG with -vv."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def resolve_ticket_id(engine: LoopEngine, ref: str) -> str | None:
    """Resolve a full ticket id or a unique prefix of one."""
    if engine.store.get_by_id(ref) is not None:
        return ref

    matches = [t for t in engine.store.get_all() if t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0].id
    if not matches:
        print(f"ERROR: Ticket '{ref}' not found")
    else:
        print(f"ERROR: '{ref}' matches {len(matches)} tickets:")
        for ticket in matches:
            print(f"  {ticket.id}  {ticket.title}")
    return None


def run_command(args) -> int:
    """Build the engine, run one command, flush the store.

    Exit codes: 0 ok, 1 runtime failure, 2 user or configuration error.
    """
    try:
        engine = LoopEngine.create(args.home)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    try:
        if getattr(args, 'id', None):
            resolved = resolve_ticket_id(engine, args.id)
            if resolved is None:
                return 2
            args.id = resolved
        return args.handler(args, engine)
    except (ValidationError, GateError, TicketNotFound, ValueError) as e:
        print(f"ERROR: {e}")
        return 2
    except (ProvisioningError, PRDGenerationError, OSError) as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        engine.shutdown()


def _add_ticket_fields(parser: argparse.ArgumentParser, creating: bool):
    parser.add_argument('--description', '-d', help='Ticket description')
    parser.add_argument('--criteria', '-a', action='append', metavar='CRITERION',
                        help='Acceptance criterion (repeatable)')
    parser.add_argument('--type', '-t', choices=TYPE_CHOICES,
                        default='feature' if creating else None, help='Ticket type')
    parser.add_argument('--priority', '-P', choices=PRIORITY_CHOICES,
                        default='medium' if creating else None, help='Ticket priority')
    parser.add_argument('--project', help='Project ID')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='le', description='Loop Engine ticket board and agent runner')
    parser.add_argument('--home', help='Engine home directory (default: $LOOPENGINE_HOME or ~/.loopengine)')
    parser.add_argument('--verbose', '-v', action='count', default=0, help='More logging (-v info, -vv debug)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # le new
    p_new = subparsers.add_parser('new', help='Create ticket in the backlog')
    p_new.add_argument('title', help='Ticket title')
    _add_ticket_fields(p_new, creating=True)
    p_new.set_defaults(handler=cmd_tickets_module.cmd_new)

    # le list
    p_list = subparsers.add_parser('list', help='List tickets by column')
    p_list.add_argument('--status', '-s', choices=STATUS_CHOICES, help='Only this column')
    p_list.set_defaults(handler=cmd_tickets_module.cmd_list)

    # le show
    p_show = subparsers.add_parser('show', help='Show ticket details')
    p_show.add_argument('id', help='Ticket ID or unique prefix')
    p_show.set_defaults(handler=cmd_tickets_module.cmd_show)

    # le move
    p_move = subparsers.add_parser('move', help='Move ticket to another column')
    p_move.add_argument('id', help='Ticket ID or unique prefix')
    p_move.add_argument('status', choices=STATUS_CHOICES, help='Target column')
    p_move.set_defaults(handler=cmd_tickets_module.cmd_move)

    # le reorder
    p_reorder = subparsers.add_parser('reorder', help='Place ticket at a position in a column')
    p_reorder.add_argument('id', help='Ticket ID or unique prefix')
    p_reorder.add_argument('status', choices=STATUS_CHOICES, help='Target column')
    p_reorder.add_argument('index', type=int, help='Position (0 = top)')
    p_reorder.set_defaults(handler=cmd_tickets_module.cmd_reorder)

    # le edit
    p_edit = subparsers.add_parser('edit', help='Edit ticket fields')
    p_edit.add_argument('id', help='Ticket ID or unique prefix')
    p_edit.add_argument('--title', help='New title')
    _add_ticket_fields(p_edit, creating=False)
    p_edit.set_defaults(handler=cmd_tickets_module.cmd_edit)

    # le delete
    p_delete = subparsers.add_parser('delete', help='Delete ticket')
    p_delete.add_argument('id', help='Ticket ID or unique prefix')
    p_delete.set_defaults(handler=cmd_tickets_module.cmd_delete)

    # le prd
    p_prd = subparsers.add_parser('prd', help='Generate and approve PRDs')
    prd_sub = p_prd.add_subparsers(dest='prd_cmd', required=True)
    for name, handler, help_text in [
        ('generate', cmd_prd_module.cmd_prd_generate, 'Generate PRD (unapproved)'),
        ('approve', cmd_prd_module.cmd_prd_approve, 'Approve PRD'),
        ('reject', cmd_prd_module.cmd_prd_reject, 'Reject PRD (keeps content)'),
        ('show', cmd_prd_module.cmd_prd_show, 'Show PRD'),
    ]:
        p = prd_sub.add_parser(name, help=help_text)
        p.add_argument('id', help='Ticket ID or unique prefix')
        p.set_defaults(handler=handler)

    # le run
    p_run = subparsers.add_parser('run', help='Run the agent for a ticket (Ctrl-C stops)')
    p_run.add_argument('id', help='Ticket ID or unique prefix')
    p_run.add_argument('--base-dir', '-b', dest='base_dir',
                       help='Directory to create the ticket workspace in (first run only)')
    p_run.add_argument('--notify', action='store_true', help='Desktop notification on start/finish')
    p_run.set_defaults(handler=cmd_run_module.cmd_run)

    # le status
    p_status = subparsers.add_parser('status', help='Show ticket and run status')
    p_status.add_argument('id', help='Ticket ID or unique prefix')
    p_status.set_defaults(handler=cmd_run_module.cmd_status)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return run_command(args)


if __name__ == '__main__':
    sys.exit(main())
