"""Shared fixtures."""

import pytest

from loopengine.tickets.store import TicketStore


def make_request(**overrides) -> dict:
    request = {
        "title": "Add login page",
        "description": "Users need to sign in",
        "acceptanceCriteria": ["Form renders", "Bad password shows error"],
        "type": "feature",
        "priority": "high",
    }
    request.update(overrides)
    return request


@pytest.fixture
def store(tmp_path):
    """Store with a long debounce so only explicit flushes write."""
    return TicketStore(tmp_path / "tickets.json", debounce_seconds=60)


# Forward path through the board, used to walk a fresh ticket to any column
BOARD_PATH = ["up_next", "in_review", "in_progress", "in_testing", "completed"]


def advance(store, ticket_id: str, target: str):
    """Transition a backlog ticket step by step until it reaches target."""
    ticket = store.get_by_id(ticket_id)
    for status in BOARD_PATH:
        if ticket.status.value == target:
            break
        ticket = store.transition(ticket_id, status)
    return ticket


@pytest.fixture
def create_ticket(store):
    """Factory: create a ticket, optionally walked to a status."""
    def _create(status: str = "backlog", **overrides):
        ticket = store.create(make_request(**overrides))
        return advance(store, ticket.id, status)
    return _create
