"""Tests for loopengine.workflow.state_machine module.

Tests the wrappers around the FSM.
The FSM itself is tested in test_fsm.py.
"""

import pytest

from loopengine.lib.validate import ValidationError
from loopengine.workflow.state_machine import (
    VALID_TRANSITIONS,
    InvalidTransition,
    TicketStatus,
    allowed_targets,
    apply_transition,
    can_transition,
    coerce_status,
    parse_status,
)


class TestParseStatus:
    def test_parse_valid_status(self):
        assert parse_status("backlog") == TicketStatus.BACKLOG
        assert parse_status("in_testing") == TicketStatus.IN_TESTING

    def test_parse_none(self):
        assert parse_status(None) is None

    def test_parse_unknown(self):
        assert parse_status("done") is None
        assert parse_status("") is None

    def test_coerce_accepts_enum_and_string(self):
        assert coerce_status(TicketStatus.UP_NEXT) == TicketStatus.UP_NEXT
        assert coerce_status("up_next") == TicketStatus.UP_NEXT

    def test_coerce_rejects_unknown(self):
        with pytest.raises(ValueError):
            coerce_status("nope")


class TestTicketStatusEnum:
    def test_values_match_fsm(self):
        from loopengine.workflow.fsm import STATES
        assert {s.value for s in TicketStatus} == set(STATES)


class TestAllowedTargets:
    def test_table_matches_fsm(self):
        from loopengine.workflow.fsm import TRIGGER_FOR
        pairs = {
            (source.value, dest.value)
            for source, targets in VALID_TRANSITIONS.items()
            for dest in targets
        }
        assert pairs == set(TRIGGER_FOR)

    def test_completed_is_terminal(self):
        assert allowed_targets(TicketStatus.COMPLETED) == frozenset()

    def test_in_progress_only_goes_to_testing(self):
        assert allowed_targets(TicketStatus.IN_PROGRESS) == {TicketStatus.IN_TESTING}


class TestCanTransition:
    def test_allowed(self):
        assert can_transition("backlog", "up_next")
        assert can_transition(TicketStatus.IN_TESTING, TicketStatus.IN_PROGRESS)

    def test_forbidden(self):
        assert not can_transition("backlog", "completed")
        assert not can_transition("completed", "backlog")

    def test_self_transition_forbidden(self):
        for status in TicketStatus:
            assert not can_transition(status, status)

    def test_unknown_is_false(self):
        assert not can_transition("bogus", "backlog")


class TestApplyTransition:
    def test_valid_transition_returns_new_status(self):
        assert apply_transition("t1", "in_review", TicketStatus.IN_PROGRESS) == TicketStatus.IN_PROGRESS

    def test_invalid_transition_raises(self):
        with pytest.raises(InvalidTransition) as exc_info:
            apply_transition("t1", "backlog", TicketStatus.IN_PROGRESS)
        err = exc_info.value
        assert err.from_state == "backlog"
        assert err.to_state == TicketStatus.IN_PROGRESS
        assert err.ticket_id == "t1"
        assert "backlog -> in_progress" in str(err)

    def test_invalid_transition_is_validation_error(self):
        with pytest.raises(ValidationError):
            apply_transition("t1", "completed", TicketStatus.BACKLOG)

    def test_self_transition_rejected(self):
        with pytest.raises(InvalidTransition):
            apply_transition("t1", "up_next", TicketStatus.UP_NEXT)

    @pytest.mark.parametrize("source", [s for s in TicketStatus])
    def test_only_table_pairs_succeed(self, source):
        for target in TicketStatus:
            if target in allowed_targets(source):
                assert apply_transition("t1", source.value, target) == target
            else:
                with pytest.raises(InvalidTransition):
                    apply_transition("t1", source.value, target)
