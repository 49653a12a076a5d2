from cancellation_engine.schemas.appointment_schema import (
    Actor,
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AuditEntry,
    ClientContact,
    GatewayReference,
    Payment,
    PaymentMode,
    PaymentStatus,
    ServiceLine,
    TimeRange,
)
from cancellation_engine.schemas.outcome_schema import (
    CancellationOutcome,
    CancellationPreview,
    CancellationResult,
    MatchReason,
    MatchResult,
    OutcomeReason,
    RefundReceipt,
    RefundRequest,
)
from cancellation_engine.schemas.policy_schema import (
    AppliesTo,
    CancellationPolicy,
    PartialRefund,
    PolicyScope,
    PolicySource,
    ResolvedPolicy,
)
from cancellation_engine.schemas.waitlist_schema import (
    MatchCriteria,
    TimePreference,
    WaitlistEntry,
    WaitlistStatus,
)

__all__ = [
    "Actor", "Appointment", "AppointmentDraft", "AppointmentStatus", "AuditEntry",
    "ClientContact", "GatewayReference", "Payment", "PaymentMode", "PaymentStatus",
    "ServiceLine", "TimeRange",
    "CancellationOutcome", "CancellationPreview", "CancellationResult",
    "MatchReason", "MatchResult", "OutcomeReason", "RefundReceipt", "RefundRequest",
    "AppliesTo", "CancellationPolicy", "PartialRefund", "PolicyScope", "PolicySource",
    "ResolvedPolicy",
    "MatchCriteria", "TimePreference", "WaitlistEntry", "WaitlistStatus",
]
