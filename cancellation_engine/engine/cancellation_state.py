"""
Finite state machine for a single cancellation request.

    requested -> outcome_computed -> refund_issued  -> committed
                                  -> refund_skipped -> committed
                                  -> failed            (gateway error, nothing written)
    requested / outcome_computed / refund_* -> superseded  (another request already committed)

Every transition is explicit; an orchestrator bug that tries to commit
before the refund step, or refund twice, is rejected with a clear error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationState(str, Enum):
    """All states of a cancellation request."""
    REQUESTED = "requested"
    OUTCOME_COMPUTED = "outcome_computed"
    REFUND_ISSUED = "refund_issued"
    REFUND_SKIPPED = "refund_skipped"
    COMMITTED = "committed"
    SUPERSEDED = "superseded"
    FAILED = "failed"


class CancellationTrigger(str, Enum):
    """Events that move a cancellation forward."""
    OUTCOME_READY = "outcome_ready"
    ALREADY_CANCELLED = "already_cancelled"
    REFUND_SUCCEEDED = "refund_succeeded"
    REFUND_NOT_NEEDED = "refund_not_needed"
    GATEWAY_FAILED = "gateway_failed"
    WRITE_APPLIED = "write_applied"
    WRITE_REJECTED = "write_rejected"


TERMINAL_STATES = frozenset({
    CancellationState.COMMITTED,
    CancellationState.SUPERSEDED,
    CancellationState.FAILED,
})


@dataclass(frozen=True)
class Transition:
    """A single valid state transition."""
    from_state: CancellationState
    to_state: CancellationState
    trigger: CancellationTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: CancellationState
    entered_at: datetime
    trigger: Optional[CancellationTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class CancellationStateMachine:
    """Tracks one cancellation request through its lifecycle."""

    TRANSITIONS: list[Transition] = [
        Transition(CancellationState.REQUESTED, CancellationState.OUTCOME_COMPUTED,
                   CancellationTrigger.OUTCOME_READY),
        Transition(CancellationState.REQUESTED, CancellationState.SUPERSEDED,
                   CancellationTrigger.ALREADY_CANCELLED),

        Transition(CancellationState.OUTCOME_COMPUTED, CancellationState.REFUND_ISSUED,
                   CancellationTrigger.REFUND_SUCCEEDED),
        Transition(CancellationState.OUTCOME_COMPUTED, CancellationState.REFUND_SKIPPED,
                   CancellationTrigger.REFUND_NOT_NEEDED),
        Transition(CancellationState.OUTCOME_COMPUTED, CancellationState.FAILED,
                   CancellationTrigger.GATEWAY_FAILED),
        Transition(CancellationState.OUTCOME_COMPUTED, CancellationState.SUPERSEDED,
                   CancellationTrigger.WRITE_REJECTED),

        Transition(CancellationState.REFUND_ISSUED, CancellationState.COMMITTED,
                   CancellationTrigger.WRITE_APPLIED),
        Transition(CancellationState.REFUND_SKIPPED, CancellationState.COMMITTED,
                   CancellationTrigger.WRITE_APPLIED),
        Transition(CancellationState.REFUND_ISSUED, CancellationState.SUPERSEDED,
                   CancellationTrigger.WRITE_REJECTED),
        Transition(CancellationState.REFUND_SKIPPED, CancellationState.SUPERSEDED,
                   CancellationTrigger.WRITE_REJECTED),
    ]

    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        self._current_state = CancellationState.REQUESTED
        self._history: list[StateEntry] = [
            StateEntry(state=CancellationState.REQUESTED, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_state(self) -> CancellationState:
        return self._current_state

    def transition(self, trigger: CancellationTrigger) -> CancellationState:
        """
        Execute a state transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                old_state = self._current_state
                self._current_state = t.to_state
                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "Cancellation %s: %s -> %s (trigger: %s)",
                    self.appointment_id, old_state.value,
                    self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[CancellationTrigger]:
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_terminal(self) -> bool:
        return self._current_state in TERMINAL_STATES
