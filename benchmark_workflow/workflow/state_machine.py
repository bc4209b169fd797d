"""
Order workflow state machine.

State diagram, for each layer L in {DRAW, CHECK, QA, DESIGN}:

    RECEIVED        → QUEUED_<L>          (receive into the entry layer)
    QUEUED_<L>      → IN_<L>              (start / assignment)
    IN_<L>          → SUBMITTED_<L>       (submit; APPROVED_QA for QA)
    SUBMITTED_<L>   → QUEUED_<next>       (advance)
    SUBMITTED_<L>   → DELIVERED           (L was the last layer)
    IN_CHECK/IN_QA  → REJECTED_BY_<L>     (reject)
    REJECTED_BY_<L> → QUEUED_<earlier>    (rework routing)
    IN_<L>          → QUEUED_<L>          (assignment released by a supervisor)
    QUEUED/IN_<L>   → ON_HOLD             (hold)
    ON_HOLD         → QUEUED_<L>          (resume)
    non-terminal    → CANCELLED           (cancel)

SUBMITTED_*, APPROVED_QA and REJECTED_BY_* are pass-through states: the
engine validates the hop into and out of them within one transaction and
persists only where the order lands.

Which layers exist and in what order is project data; the table below
allows every layer-to-layer hop and the engine picks the concrete target
from the project's workflow_layers.
"""

from typing import Dict, FrozenSet, List, Optional, Sequence

from .enums import Layer, WorkflowState as S


QUEUED_STATES: Dict[Layer, S] = {layer: S(f"QUEUED_{layer.code}") for layer in Layer}
ACTIVE_STATES: Dict[Layer, S] = {layer: S(f"IN_{layer.code}") for layer in Layer}
SUBMITTED_STATES: Dict[Layer, S] = {
    Layer.DRAWER: S.SUBMITTED_DRAW,
    Layer.CHECKER: S.SUBMITTED_CHECK,
    Layer.QA: S.APPROVED_QA,
    Layer.DESIGNER: S.SUBMITTED_DESIGN,
}
REJECTED_STATES: Dict[Layer, S] = {
    Layer.CHECKER: S.REJECTED_BY_CHECK,
    Layer.QA: S.REJECTED_BY_QA,
}

TERMINAL_STATES: FrozenSet[S] = frozenset({S.DELIVERED, S.CANCELLED})

_LAYER_BY_STATE: Dict[S, Layer] = {}
for _table in (QUEUED_STATES, ACTIVE_STATES, SUBMITTED_STATES, REJECTED_STATES):
    for _layer, _state in _table.items():
        _LAYER_BY_STATE[_state] = _layer


def _build_transitions() -> Dict[S, FrozenSet[S]]:
    all_queued = frozenset(QUEUED_STATES.values())
    transitions: Dict[S, FrozenSet[S]] = {
        S.RECEIVED: all_queued | {S.CANCELLED},
        S.ON_HOLD: all_queued | {S.CANCELLED},
        S.DELIVERED: frozenset(),
        S.CANCELLED: frozenset(),
    }
    for layer in Layer:
        queued = QUEUED_STATES[layer]
        active = ACTIVE_STATES[layer]
        transitions[queued] = frozenset({active, S.ON_HOLD, S.CANCELLED})

        outgoing = {SUBMITTED_STATES[layer], queued, S.ON_HOLD, S.CANCELLED}
        if layer in REJECTED_STATES:
            outgoing.add(REJECTED_STATES[layer])
        transitions[active] = frozenset(outgoing)

        transitions[SUBMITTED_STATES[layer]] = all_queued | {S.DELIVERED}
    for rejected in REJECTED_STATES.values():
        transitions[rejected] = all_queued
    return transitions


VALID_TRANSITIONS: Dict[S, FrozenSet[S]] = _build_transitions()


class UnknownStateError(ValueError):
    """Raised when a value is not a workflow state."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(
            f"Unknown workflow state: '{state}'. "
            f"Valid states: {sorted(s.value for s in S)}"
        )


class IllegalTransitionError(ValueError):
    """Raised when a hop is not in VALID_TRANSITIONS."""

    def __init__(self, from_state: S, to_state: S):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid workflow transition: '{from_state.value}' -> '{to_state.value}'. "
            f"Valid transitions from '{from_state.value}': "
            f"{sorted(s.value for s in available_transitions(from_state))}"
        )


def coerce_state(value) -> S:
    try:
        return S(value)
    except ValueError:
        raise UnknownStateError(str(value)) from None


def validate_transition(from_state, to_state) -> None:
    """
    Validate that a single hop is allowed.

    Raises:
        UnknownStateError: if either value is not a workflow state
        IllegalTransitionError: if the hop is not in VALID_TRANSITIONS
    """
    source = coerce_state(from_state)
    target = coerce_state(to_state)
    if target not in VALID_TRANSITIONS[source]:
        raise IllegalTransitionError(source, target)


def validate_path(*states) -> None:
    """Validate a chain of hops, e.g. IN_QA -> REJECTED_BY_QA -> QUEUED_CHECK."""
    for source, target in zip(states, states[1:]):
        validate_transition(source, target)


def can_transition(from_state, to_state) -> bool:
    """Return True if the hop from_state -> to_state is valid."""
    return coerce_state(to_state) in VALID_TRANSITIONS[coerce_state(from_state)]


def available_transitions(from_state) -> FrozenSet[S]:
    return VALID_TRANSITIONS.get(coerce_state(from_state), frozenset())


def is_terminal(state) -> bool:
    return coerce_state(state) in TERMINAL_STATES


def is_queued(state) -> bool:
    return coerce_state(state) in QUEUED_STATES.values()


def is_active(state) -> bool:
    """True for IN_<L> states, the only states that carry an assignee."""
    return coerce_state(state) in ACTIVE_STATES.values()


def layer_of(state) -> Optional[Layer]:
    """Layer a state belongs to, None for RECEIVED/ON_HOLD/terminal states."""
    return _LAYER_BY_STATE.get(coerce_state(state))


def next_layer(layers: Sequence[Layer], current: Layer) -> Optional[Layer]:
    """Layer after current in the project's workflow, None if current is last."""
    index = list(layers).index(current)
    if index + 1 < len(layers):
        return layers[index + 1]
    return None


def earlier_layers(layers: Sequence[Layer], current: Layer) -> List[Layer]:
    """Layers that precede current in the project's workflow, in order."""
    ordered = list(layers)
    return ordered[: ordered.index(current)]
