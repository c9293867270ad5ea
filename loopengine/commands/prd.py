"""
le prd - Generate, review and approve ticket PRDs.
"""

from loopengine.workflow.engine import LoopEngine


def cmd_prd_generate(args, engine: LoopEngine) -> int:
    """Generate a PRD for the ticket (stored unapproved)."""
    print(f"Generating PRD for {args.id}...")
    prd = engine.prd_gate.generate(args.id)
    print()
    print(prd.content)
    print()
    print(f"Review it, then: le prd approve {args.id[:8]}  (or: le prd reject {args.id[:8]})")
    return 0


def cmd_prd_approve(args, engine: LoopEngine) -> int:
    ticket = engine.prd_gate.approve(args.id)
    print(f"Approved PRD for '{ticket.title}'")
    print(f"Run 'le run {args.id[:8]} --base-dir DIR' to start the agent")
    return 0


def cmd_prd_reject(args, engine: LoopEngine) -> int:
    ticket = engine.prd_gate.reject(args.id)
    print(f"Rejected PRD for '{ticket.title}' (content kept; regenerate or approve later)")
    return 0


def cmd_prd_show(args, engine: LoopEngine) -> int:
    ticket = engine.store.get_by_id(args.id)
    if ticket.prd is None:
        print(f"Ticket '{ticket.title}' has no PRD. Run 'le prd generate {args.id[:8]}'")
        return 1

    state = "approved" if ticket.prd.approved else "not approved"
    print(f"PRD for '{ticket.title}' ({state})")
    print("=" * 60)
    print(ticket.prd.content)
    return 0
