"""Result models returned by the calculator, orchestrator, gateway and matcher."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from cancellation_engine.schemas.appointment_schema import AppointmentStatus, GatewayReference
from cancellation_engine.schemas.policy_schema import PolicySource


class OutcomeReason(str, Enum):
    FREE_WINDOW = "free_window"
    PARTIAL_WINDOW = "partial_window"
    NO_REFUND_WINDOW = "no_refund_window"
    UNPAID_APPOINTMENT = "unpaid_appointment"


class CancellationOutcome(BaseModel):
    """Monetary decision for a cancellation. Amounts in minor units."""
    refund_amount: int
    outcome_status: AppointmentStatus
    reason_code: OutcomeReason
    refundable_base: int = 0
    hours_until_start: Optional[float] = None
    within_grace_period: bool = False
    price_cap_applied: bool = False


class RefundRequest(BaseModel):
    """What the orchestrator asks the payment gateway to reverse."""
    reference: GatewayReference
    amount_minor_units: int
    idempotency_key: str
    connected_account_id: Optional[str] = None


class RefundReceipt(BaseModel):
    """Gateway acknowledgement of a refund."""
    refund_id: str
    amount_minor_units: int
    status: str = "succeeded"
    idempotency_key: Optional[str] = None


class MatchReason(str, Enum):
    FILLED = "filled"
    MISSING_CONTEXT = "missing_context"
    APPOINTMENT_NOT_FOUND = "appointment_not_found"
    APPOINTMENT_NOT_CANCELLED = "appointment_not_cancelled"
    UNSUPPORTED_SERVICE_SHAPE = "unsupported_service_shape"
    NO_WAITLIST_CANDIDATES = "no_waitlist_candidates"
    NO_ELIGIBLE_CANDIDATES = "no_eligible_candidates"
    SLOT_ALREADY_TAKEN = "slot_already_taken"
    AUTOFILL_ERROR = "autofill_error"


class MatchResult(BaseModel):
    """Outcome of one waitlist fill attempt for a freed slot."""
    filled: bool
    reason: MatchReason
    appointment_id: Optional[str] = None
    waitlist_entry_id: Optional[str] = None
    skipped_entry_ids: list[str] = Field(default_factory=list)


class CancellationResult(BaseModel):
    """Response for a cancellation request, identical for first calls and retries."""
    appointment_id: str
    status: AppointmentStatus
    outcome: str
    refund_amount: int
    gateway_refund_id: Optional[str] = None
    policy_source: Optional[PolicySource] = None
    already_cancelled: bool = False
    already_processed: bool = False
    state_trace: list[str] = Field(default_factory=list)
    waitlist_match: Optional[MatchResult] = None


class CancellationPreview(BaseModel):
    """Read-only refund quote for an appointment."""
    appointment_id: str
    refund_amount: int
    status: AppointmentStatus
    reason_code: OutcomeReason
    within_grace_period: bool = False
    policy: dict
    computed_at: datetime
