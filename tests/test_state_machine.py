"""
Tests for the order state machine table.

Verifies:
- Every state has an entry in VALID_TRANSITIONS
- Terminal states have no exits
- Layer routing helpers follow the project's configured layers
"""

import pytest

from benchmark_workflow.workflow.enums import Layer, WorkflowState as S
from benchmark_workflow.workflow.state_machine import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    IllegalTransitionError,
    UnknownStateError,
    available_transitions,
    can_transition,
    earlier_layers,
    is_active,
    is_queued,
    is_terminal,
    layer_of,
    next_layer,
    validate_path,
    validate_transition,
)

FP = [Layer.DRAWER, Layer.CHECKER, Layer.QA]
PH = [Layer.DESIGNER, Layer.QA]


class TestTransitionTable:
    def test_every_state_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(S)

    @pytest.mark.parametrize("state", [S.DELIVERED, S.CANCELLED])
    def test_terminal_states_have_no_exits(self, state):
        assert available_transitions(state) == frozenset()
        assert is_terminal(state)

    def test_every_non_terminal_state_can_reach_an_exit(self):
        for state, targets in VALID_TRANSITIONS.items():
            if state not in TERMINAL_STATES:
                assert targets, state

    def test_queue_to_work(self):
        assert can_transition(S.QUEUED_DRAW, S.IN_DRAW)
        assert not can_transition(S.QUEUED_DRAW, S.IN_CHECK)

    def test_only_check_and_qa_reject(self):
        assert can_transition(S.IN_CHECK, S.REJECTED_BY_CHECK)
        assert can_transition(S.IN_QA, S.REJECTED_BY_QA)
        assert not any(t.value.startswith("REJECTED") for t in VALID_TRANSITIONS[S.IN_DRAW])
        assert not any(t.value.startswith("REJECTED") for t in VALID_TRANSITIONS[S.IN_DESIGN])

    def test_qa_submission_is_approval(self):
        validate_path(S.IN_QA, S.APPROVED_QA, S.DELIVERED)
        assert not can_transition(S.IN_QA, S.DELIVERED)

    def test_hold_only_from_queued_or_active(self):
        assert can_transition(S.QUEUED_CHECK, S.ON_HOLD)
        assert can_transition(S.IN_CHECK, S.ON_HOLD)
        assert not can_transition(S.RECEIVED, S.ON_HOLD)
        assert not can_transition(S.SUBMITTED_DRAW, S.ON_HOLD)

    def test_strings_are_accepted(self):
        validate_transition("QUEUED_QA", "IN_QA")


class TestValidation:
    def test_illegal_hop_lists_valid_targets(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            validate_transition(S.QUEUED_DRAW, S.DELIVERED)
        assert "IN_DRAW" in str(exc_info.value)
        assert exc_info.value.from_state == S.QUEUED_DRAW

    def test_unknown_state(self):
        with pytest.raises(UnknownStateError):
            validate_transition("FLYING", S.IN_DRAW)

    def test_path_fails_on_any_bad_hop(self):
        validate_path(S.IN_QA, S.REJECTED_BY_QA, S.QUEUED_CHECK)
        with pytest.raises(IllegalTransitionError):
            validate_path(S.IN_QA, S.REJECTED_BY_CHECK, S.QUEUED_DRAW)


class TestLayerHelpers:
    def test_layer_of(self):
        assert layer_of(S.QUEUED_DESIGN) == Layer.DESIGNER
        assert layer_of(S.APPROVED_QA) == Layer.QA
        assert layer_of(S.REJECTED_BY_CHECK) == Layer.CHECKER
        assert layer_of(S.ON_HOLD) is None
        assert layer_of(S.RECEIVED) is None

    def test_queued_and_active(self):
        assert is_queued(S.QUEUED_QA) and not is_active(S.QUEUED_QA)
        assert is_active(S.IN_QA) and not is_queued(S.IN_QA)

    def test_next_layer(self):
        assert next_layer(FP, Layer.DRAWER) == Layer.CHECKER
        assert next_layer(FP, Layer.QA) is None
        assert next_layer(PH, Layer.DESIGNER) == Layer.QA

    def test_earlier_layers(self):
        assert earlier_layers(FP, Layer.QA) == [Layer.DRAWER, Layer.CHECKER]
        assert earlier_layers(FP, Layer.DRAWER) == []
        assert earlier_layers(PH, Layer.QA) == [Layer.DESIGNER]


class TestLayerParsing:
    @pytest.mark.parametrize(
        "value, expected",
        [("draw", Layer.DRAWER), ("check", Layer.CHECKER), ("QA", Layer.QA), ("designer", Layer.DESIGNER)],
    )
    def test_parse_names_and_codes(self, value, expected):
        assert Layer.parse(value) == expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Layer.parse("ink")
