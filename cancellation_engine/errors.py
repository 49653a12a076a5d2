"""Error taxonomy for the cancellation engine.

Only ``GatewayError`` escapes the refund orchestrator as a genuine failure.
The others are raised at the store/engine seams and normalised into
idempotent results by the orchestrator and the waitlist matcher.
"""

from typing import Any, Optional


class CancellationEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(CancellationEngineError, ValueError):
    """Raised when a policy or appointment does not have the expected shape."""


class AlreadyCancelled(CancellationEngineError):
    """Raised when an appointment is already in a terminal cancelled state."""

    def __init__(self, appointment: Any) -> None:
        self.appointment = appointment
        super().__init__(
            f"Appointment {appointment.id} is already {appointment.status.value}"
        )


IDEMPOTENCY_CONFLICT_CODES = frozenset({"idempotency_error", "idempotency_key_in_use"})


class GatewayError(CancellationEngineError):
    """Refund call failed. No appointment state was mutated; safe to retry."""

    retryable = True

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)

    @property
    def is_idempotency_conflict(self) -> bool:
        """The key is held by another request, in flight or with different parameters."""
        return self.code in IDEMPOTENCY_CONFLICT_CODES


class ConcurrentModification(CancellationEngineError):
    """A conditional write lost the race against another request."""

    def __init__(self, appointment_id: str, current_status: Optional[str] = None) -> None:
        self.appointment_id = appointment_id
        self.current_status = current_status
        super().__init__(
            f"Appointment {appointment_id} changed concurrently "
            f"(current status: {current_status or 'unknown'})"
        )


class SlotTaken(CancellationEngineError):
    """An active appointment already occupies the specialist + time window."""

    def __init__(self, specialist_id: str, conflicting_id: Optional[str] = None) -> None:
        self.specialist_id = specialist_id
        self.conflicting_id = conflicting_id
        super().__init__(
            f"Slot for specialist {specialist_id} is taken by {conflicting_id or 'another booking'}"
        )
