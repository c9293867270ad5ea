"""
Per-ticket lock management.

Serializes operations on one ticket's run (execute, stop, exit handling)
while leaving different tickets fully independent. Locks live in-process;
the engine supervises its children from a single process.
"""

import threading
from contextlib import contextmanager


class TicketLocks:
    """Registry of re-entrant locks keyed by ticket id."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _get(self, ticket_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(ticket_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[ticket_id] = lock
            return lock

    @contextmanager
    def hold(self, ticket_id: str):
        """Acquire the lock for one ticket, yield, release on exit."""
        lock = self._get(ticket_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
