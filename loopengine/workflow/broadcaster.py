"""Status broadcaster: the engine's single outward-facing event stream.

Two channels:
- status events: (ticket_id, running, iteration), one per run status change
- ticket updates: the full Ticket after an engine-initiated change

Subscribers are called synchronously, in subscription order, on the thread
that published. A failing subscriber is logged and does not stop delivery
to the others.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from loopengine.tickets.models import Ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    ticket_id: str
    running: bool
    iteration: int


StatusSubscriber = Callable[[StatusEvent], None]
TicketSubscriber = Callable[[Ticket], None]


class StatusBroadcaster:
    def __init__(self):
        self._status_subscribers: list[StatusSubscriber] = []
        self._ticket_subscribers: list[TicketSubscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: StatusSubscriber) -> Callable[[], None]:
        """Register for status events. Returns an unsubscribe function."""
        with self._lock:
            self._status_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._status_subscribers:
                    self._status_subscribers.remove(callback)

        return unsubscribe

    def subscribe_tickets(self, callback: TicketSubscriber) -> Callable[[], None]:
        """Register for ticket updates. Returns an unsubscribe function."""
        with self._lock:
            self._ticket_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._ticket_subscribers:
                    self._ticket_subscribers.remove(callback)

        return unsubscribe

    def publish(self, ticket_id: str, running: bool, iteration: int) -> None:
        """Deliver one status event to every status subscriber."""
        event = StatusEvent(ticket_id=ticket_id, running=running, iteration=iteration)
        with self._lock:
            subscribers = list(self._status_subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Status subscriber {callback!r} failed for {ticket_id}")

    def publish_ticket(self, ticket: Ticket) -> None:
        """Deliver an updated ticket to every ticket subscriber."""
        with self._lock:
            subscribers = list(self._ticket_subscribers)
        for callback in subscribers:
            try:
                callback(ticket)
            except Exception:
                logger.exception(f"Ticket subscriber {callback!r} failed for {ticket.id}")
