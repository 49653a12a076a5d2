from cancellation_engine.engine.cancellation_state import (
    CancellationState,
    CancellationStateMachine,
    CancellationTrigger,
)
from cancellation_engine.engine.outcome_calculator import compute_cancellation_outcome
from cancellation_engine.engine.policy_resolver import PolicyResolver, default_policy
from cancellation_engine.engine.refund_orchestrator import RefundOrchestrator, idempotency_key_for
from cancellation_engine.engine.waitlist_matcher import WaitlistMatcher, time_bucket

__all__ = [
    "CancellationState",
    "CancellationStateMachine",
    "CancellationTrigger",
    "compute_cancellation_outcome",
    "PolicyResolver",
    "default_policy",
    "RefundOrchestrator",
    "idempotency_key_for",
    "WaitlistMatcher",
    "time_bucket",
]
