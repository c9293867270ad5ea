"""
JSON file-based ticket store.

Tickets are stored as one JSON array in <home>/tickets.json:
  - Lazy-load on first access
  - Debounced atomic writes (write-to-temp + rename)
  - flush() writes pending changes synchronously; hosts call it before exit

Status changes go through the ticket FSM; nothing else assigns `status`.
"""

import copy
import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Optional

from loopengine.lib.constants import FLUSH_DEBOUNCE_SECONDS
from loopengine.lib.validate import ValidationError, validate, validate_before_write
from loopengine.tickets.models import (
    PRD,
    HistoryEvent,
    Ticket,
    TicketPriority,
    TicketType,
    now_ms,
)
from loopengine.workflow.state_machine import TicketStatus, apply_transition, coerce_status

logger = logging.getLogger(__name__)


class TicketNotFound(KeyError):
    """No ticket with the requested id."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket not found: {ticket_id}")

    def __str__(self) -> str:
        return self.args[0]


# Update request keys -> Ticket attribute
_UPDATABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "acceptanceCriteria": "acceptance_criteria",
    "type": "type",
    "priority": "priority",
    "projectId": "project_id",
}


class TicketStore:
    """Ticket collection with transition enforcement and buffered persistence."""

    def __init__(self, file_path: Path, debounce_seconds: float = FLUSH_DEBOUNCE_SECONDS):
        self.file_path = Path(file_path)
        self.debounce_seconds = debounce_seconds
        self._tickets: Optional[list[Ticket]] = None
        self._dirty = False
        self._flush_timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

    # ── Persistence ────────────────────────────────────────────

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self._flush_timer is None:
            self._flush_timer = threading.Timer(self.debounce_seconds, self._flush_from_timer)
            self._flush_timer.daemon = True
            self._flush_timer.start()

    def _flush_from_timer(self) -> None:
        with self._lock:
            self._flush_timer = None
        try:
            self.flush()
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"[STORE] Deferred write to {self.file_path} failed: {e}")

    def flush(self) -> None:
        """Write pending changes now. No-op when nothing changed."""
        with self._lock:
            if self._flush_timer is not None:
                self._flush_timer.cancel()
                self._flush_timer = None
            if not self._dirty:
                return
            self._dirty = False
            try:
                self._persist()
            except Exception:
                self._dirty = True
                raise

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _load(self) -> list[Ticket]:
        if self._tickets is not None:
            return self._tickets

        self._tickets = []
        if not self.file_path.exists():
            return self._tickets

        try:
            parsed = json.loads(self.file_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"[STORE] Failed to read {self.file_path}, starting empty: {e}")
            return self._tickets

        if not isinstance(parsed, list):
            logger.warning(f"[STORE] {self.file_path} is not a JSON array, starting empty")
            return self._tickets

        for record in parsed:
            try:
                ticket = Ticket.from_dict(record)
                validate(ticket.to_dict(), "ticket")
            except (KeyError, ValueError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(f"[STORE] Skipping malformed ticket record: {e}")
                continue
            self._tickets.append(ticket)

        return self._tickets

    def _persist(self) -> None:
        records = [ticket.to_dict() for ticket in self._load()]
        for record in records:
            validate_before_write(record, "ticket", self.file_path)

        directory = self.file_path.parent
        directory.mkdir(parents=True, exist_ok=True)

        tmp = directory / f".tickets-{now_ms()}-{os.getpid()}.tmp"
        tmp.write_text(json.dumps(records, indent=2))
        os.replace(tmp, self.file_path)
        logger.debug(f"[STORE] Wrote {len(records)} tickets to {self.file_path}")

    # ── Queries ────────────────────────────────────────────────

    def _find(self, ticket_id: str) -> Ticket:
        for ticket in self._load():
            if ticket.id == ticket_id:
                return ticket
        raise TicketNotFound(ticket_id)

    def get_all(self) -> list[Ticket]:
        with self._lock:
            return copy.deepcopy(self._load())

    def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            try:
                return copy.deepcopy(self._find(ticket_id))
            except TicketNotFound:
                return None

    def _column(self, status: TicketStatus, exclude: str | None = None) -> list[Ticket]:
        column = [t for t in self._load() if t.status == status and t.id != exclude]
        return sorted(column, key=lambda t: t.order)

    def get_column(self, status: TicketStatus | str) -> list[Ticket]:
        """Tickets in one status column, sorted by order."""
        with self._lock:
            return copy.deepcopy(self._column(coerce_status(status)))

    def _next_order(self, status: TicketStatus, exclude: str | None = None) -> int:
        column = self._column(status, exclude=exclude)
        return max((t.order for t in column), default=-1) + 1

    # ── Mutations ──────────────────────────────────────────────

    def create(self, request: dict) -> Ticket:
        """Create a ticket at the end of the backlog column.

        Raises:
            ValidationError: If the request doesn't match the create schema
        """
        validate(request, "ticket_create")

        with self._lock:
            now = now_ms()
            prd = request.get("prd")
            ticket = Ticket(
                id=str(uuid.uuid4()),
                title=request["title"],
                description=request["description"],
                acceptance_criteria=list(request["acceptanceCriteria"]),
                status=TicketStatus.BACKLOG,
                type=TicketType(request["type"]),
                priority=TicketPriority(request["priority"]),
                project_id=request.get("projectId"),
                prd=PRD.from_dict(prd) if prd else None,
                history=[HistoryEvent(timestamp=now, action="created")],
                created_at=now,
                updated_at=now,
                order=self._next_order(TicketStatus.BACKLOG),
            )
            self._load().append(ticket)
            self._mark_dirty()
            logger.info(f"[STORE] Created ticket {ticket.id}: {ticket.title}")
            return copy.deepcopy(ticket)

    def update(self, ticket_id: str, updates: dict) -> Ticket:
        """Update descriptive fields. Status is not updatable here.

        Raises:
            TicketNotFound: If no such ticket
            ValidationError: If updates don't match the update schema
        """
        validate(updates, "ticket_update")

        with self._lock:
            ticket = self._find(ticket_id)
            for key, value in updates.items():
                attr = _UPDATABLE_FIELDS[key]
                if key == "type":
                    value = TicketType(value)
                elif key == "priority":
                    value = TicketPriority(value)
                elif key == "acceptanceCriteria":
                    value = list(value)
                setattr(ticket, attr, value)

            ticket.updated_at = now_ms()
            ticket.history.append(HistoryEvent(timestamp=ticket.updated_at, action="updated"))
            self._mark_dirty()
            return copy.deepcopy(ticket)

    def delete(self, ticket_id: str) -> bool:
        with self._lock:
            tickets = self._load()
            for idx, ticket in enumerate(tickets):
                if ticket.id == ticket_id:
                    del tickets[idx]
                    self._mark_dirty()
                    logger.info(f"[STORE] Deleted ticket {ticket_id}")
                    return True
            return False

    def transition(self, ticket_id: str, target: TicketStatus | str) -> Ticket:
        """Move a ticket to `target`, placing it at the end of that column.

        Raises:
            TicketNotFound: If no such ticket
            InvalidTransition: If target isn't allowed from the current status
        """
        target_status = coerce_status(target)
        with self._lock:
            ticket = self._find(ticket_id)
            old_status = ticket.status
            new_status = apply_transition(ticket_id, old_status.value, target_status)

            ticket.order = self._next_order(new_status, exclude=ticket_id)
            ticket.status = new_status
            ticket.updated_at = now_ms()
            ticket.history.append(HistoryEvent(
                timestamp=ticket.updated_at,
                action="transitioned",
                from_status=old_status.value,
                to_status=new_status.value,
            ))
            self._mark_dirty()
            return copy.deepcopy(ticket)

    def reorder(
        self,
        ticket_id: str,
        target: TicketStatus | str,
        index: int,
    ) -> dict[TicketStatus, list[Ticket]]:
        """Move a ticket to position `index` of the `target` column.

        A column change is a transition and obeys the same table. Every
        touched column is renumbered 0..N-1.

        Returns:
            Touched columns (source and target) mapped to their tickets in order

        Raises:
            TicketNotFound: If no such ticket
            InvalidTransition: If the column change isn't allowed
            ValueError: If index is negative
        """
        if index < 0:
            raise ValueError(f"Reorder index must be >= 0, got {index}")
        target_status = coerce_status(target)

        with self._lock:
            ticket = self._find(ticket_id)
            source_status = ticket.status
            touched = [target_status]

            if source_status != target_status:
                apply_transition(ticket_id, source_status.value, target_status)
                ticket.status = target_status
                ticket.history.append(HistoryEvent(
                    timestamp=now_ms(),
                    action="transitioned",
                    from_status=source_status.value,
                    to_status=target_status.value,
                ))
                touched.append(source_status)

            column = self._column(target_status, exclude=ticket_id)
            column.insert(min(index, len(column)), ticket)
            for position, t in enumerate(column):
                t.order = position

            if source_status != target_status:
                for position, t in enumerate(self._column(source_status)):
                    t.order = position

            ticket.updated_at = now_ms()
            self._mark_dirty()
            return {status: copy.deepcopy(self._column(status)) for status in touched}

    def set_worktree_path(
        self,
        ticket_id: str,
        base_path: str,
        full_path: str | None = None,
    ) -> Ticket:
        """Record the base directory and, once provisioned, the workspace path.

        An already-recorded worktree path is never replaced or cleared.
        """
        with self._lock:
            ticket = self._find(ticket_id)
            ticket.worktree_base_path = base_path
            if full_path:
                if ticket.worktree_path and ticket.worktree_path != full_path:
                    logger.warning(
                        f"[STORE] {ticket_id}: worktree already set to {ticket.worktree_path}, "
                        f"ignoring {full_path}"
                    )
                elif not ticket.worktree_path:
                    ticket.worktree_path = full_path
            ticket.updated_at = now_ms()
            self._mark_dirty()
            return copy.deepcopy(ticket)

    def set_prd(self, ticket_id: str, content: str, approved: bool = False) -> PRD:
        """Attach (or replace) a ticket's PRD."""
        with self._lock:
            ticket = self._find(ticket_id)
            ticket.prd = PRD(content=content, generated_at=now_ms(), approved=approved)
            ticket.updated_at = now_ms()
            self._mark_dirty()
            return copy.deepcopy(ticket.prd)

    def approve_prd(self, ticket_id: str, approved: bool) -> bool:
        """Set the approved flag on an existing PRD.

        Returns False if the ticket has no PRD. Content is kept either way.
        """
        with self._lock:
            ticket = self._find(ticket_id)
            if ticket.prd is None:
                return False
            ticket.prd.approved = approved
            ticket.updated_at = now_ms()
            ticket.history.append(HistoryEvent(
                timestamp=ticket.updated_at,
                action="prd_approved" if approved else "prd_rejected",
            ))
            self._mark_dirty()
            return True
