"""
Request Lifecycle
-----------------
Tracks one execute() call through its states with validated transitions.
Every transition is logged and kept for diagnostics.

PENDING -> RATE_GATED -> SENT -> SUCCESS
                                 RETRYABLE_FAILURE -> RATE_GATED
                                 TERMINAL_FAILURE
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Dict, List, Set

from ..infra.logging import get_logger


class RequestState(Enum):
    """States of a single dispatched request."""
    PENDING = auto()            # Created, not yet waiting on the limiter
    RATE_GATED = auto()         # Waiting for a permit
    SENT = auto()               # Handed to the transport
    SUCCESS = auto()            # 2xx received
    RETRYABLE_FAILURE = auto()  # Transport error, 429 or 5xx; will retry
    TERMINAL_FAILURE = auto()   # Surfaced to the caller


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: RequestState
    to_state: RequestState
    timestamp: datetime
    reason: str = ""

    def __repr__(self) -> str:
        return (
            f"StateTransition({self.from_state.name} → {self.to_state.name}, "
            f"reason='{self.reason}')"
        )


VALID_TRANSITIONS: Dict[RequestState, Set[RequestState]] = {
    RequestState.PENDING: {RequestState.RATE_GATED},
    RequestState.RATE_GATED: {RequestState.SENT, RequestState.TERMINAL_FAILURE},
    RequestState.SENT: {
        RequestState.SUCCESS,
        RequestState.RETRYABLE_FAILURE,
        RequestState.TERMINAL_FAILURE,
    },
    RequestState.RETRYABLE_FAILURE: {RequestState.RATE_GATED, RequestState.TERMINAL_FAILURE},
    RequestState.SUCCESS: set(),
    RequestState.TERMINAL_FAILURE: set(),
}

TERMINAL_STATES = frozenset({RequestState.SUCCESS, RequestState.TERMINAL_FAILURE})


class RequestLifecycle:
    """State machine for one execute() call."""

    def __init__(self, request_id: str, label: str = ""):
        self.request_id = request_id
        self.label = label
        self._state = RequestState.PENDING
        self._history: List[StateTransition] = []
        self._logger = get_logger("core.lifecycle")

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def history(self) -> List[StateTransition]:
        return self._history.copy()

    @property
    def attempts(self) -> int:
        """Number of times the request was handed to the transport."""
        return sum(1 for t in self._history if t.to_state == RequestState.SENT)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, to_state: RequestState) -> bool:
        return to_state in VALID_TRANSITIONS.get(self._state, set())

    def transition(self, to_state: RequestState, reason: str = "") -> StateTransition:
        """
        Move to a new state.

        Raises:
            ValueError: If the transition is not valid
        """
        if not self.can_transition(to_state):
            valid_names = sorted(s.name for s in VALID_TRANSITIONS.get(self._state, set()))
            raise ValueError(
                f"Invalid transition: {self._state.name} → {to_state.name}. "
                f"Valid targets: {valid_names}"
            )

        record = StateTransition(
            from_state=self._state,
            to_state=to_state,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )
        self._history.append(record)
        self._state = to_state

        self._logger.debug(
            f"{self.label or self.request_id}: {record.from_state.name} → {to_state.name}"
            + (f" ({reason})" if reason else "")
        )
        return record
