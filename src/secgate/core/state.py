from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from secgate.core.errors import StateTransitionInvalid
from secgate.core.models import GateState


# Strictly sequential; FAILED_FATAL is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[GateState, set[GateState]] = {
    GateState.COLLECTING: {GateState.NORMALIZING, GateState.FAILED_FATAL},
    GateState.NORMALIZING: {GateState.EVALUATING, GateState.FAILED_FATAL},
    GateState.EVALUATING: {GateState.REPORTING, GateState.FAILED_FATAL},
    GateState.REPORTING: {GateState.DONE, GateState.FAILED_FATAL},
    GateState.DONE: set(),
    GateState.FAILED_FATAL: set(),
}

TERMINAL_STATES = frozenset({GateState.DONE, GateState.FAILED_FATAL})


@dataclass(frozen=True)
class TransitionEvent:
    run_id: str
    from_state: GateState
    to_state: GateState
    at_utc: str  # ISO string

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "at": self.at_utc,
        }


def can_transition(from_state: GateState, to_state: GateState) -> bool:
    return to_state in ALLOWED_TRANSITIONS.get(from_state, set())


def transition(run_id: str, from_state: GateState, to_state: GateState) -> TransitionEvent:
    if not can_transition(from_state, to_state):
        raise StateTransitionInvalid(from_state.value, to_state.value)

    ts = datetime.now(timezone.utc).isoformat()
    return TransitionEvent(
        run_id=run_id,
        from_state=from_state,
        to_state=to_state,
        at_utc=ts,
    )
