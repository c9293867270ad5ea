"""Tests for loopengine.workflow.fsm module."""

import pytest
from transitions import MachineError

from loopengine.workflow.fsm import STATES, TRANSITIONS, TRIGGER_FOR, TicketFSM


class TestTransitionTable:
    """The table itself."""

    def test_every_source_and_dest_is_a_state(self):
        for t in TRANSITIONS:
            assert t["source"] in STATES
            assert t["dest"] in STATES

    def test_completed_has_no_outgoing_transitions(self):
        assert not [t for t in TRANSITIONS if t["source"] == "completed"]

    def test_exact_allowed_pairs(self):
        assert set(TRIGGER_FOR) == {
            ("backlog", "up_next"),
            ("up_next", "backlog"),
            ("up_next", "in_review"),
            ("in_review", "in_progress"),
            ("in_review", "backlog"),
            ("in_progress", "in_testing"),
            ("in_testing", "completed"),
            ("in_testing", "in_progress"),
        }

    def test_no_self_transitions(self):
        for source, dest in TRIGGER_FOR:
            assert source != dest


class TestTicketFSM:
    """Tests for the TicketFSM wrapper."""

    def test_starts_in_given_status(self):
        fsm = TicketFSM("t1", "in_review")
        assert fsm.state == "in_review"

    def test_unknown_status_defaults_to_backlog(self):
        fsm = TicketFSM("t1", "bogus")
        assert fsm.state == "backlog"

    def test_trigger_moves_state(self):
        fsm = TicketFSM("t1", "in_progress")
        fsm.submit_for_testing()
        assert fsm.state == "in_testing"

    def test_demote_works_from_both_sources(self):
        for source in ("up_next", "in_review"):
            fsm = TicketFSM("t1", source)
            fsm.demote()
            assert fsm.state == "backlog"

    def test_invalid_trigger_raises_machine_error(self):
        fsm = TicketFSM("t1", "backlog")
        with pytest.raises(MachineError):
            fsm.complete()
        assert fsm.state == "backlog"

    def test_no_auto_transitions(self):
        fsm = TicketFSM("t1", "backlog")
        assert not hasattr(fsm, "to_completed")

    def test_can(self):
        fsm = TicketFSM("t1", "in_testing")
        assert fsm.can("complete")
        assert fsm.can("reopen")
        assert not fsm.can("queue")

    def test_completed_can_do_nothing(self):
        fsm = TicketFSM("t1", "completed")
        assert not any(fsm.can(t["trigger"]) for t in TRANSITIONS)
