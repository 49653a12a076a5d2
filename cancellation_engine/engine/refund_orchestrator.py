"""
Refund orchestration for appointment cancellations.

Turns a cancellation request into at most one monetary refund and one
committed terminal status:

1. Already cancelled -> return the committed outcome, no gateway call.
2. Unpaid hold       -> cancelled_no_refund, no gateway call.
3. Otherwise resolve the policy and compute the outcome.
4. Refund through the gateway with an idempotency key derived from the
   appointment id and its last-modified time, so whole-operation retries
   collapse into one refund on the gateway side.
5. Commit with a compare-and-swap on status in {confirmed, reserved_unpaid}.
   Losing the race returns the winner's outcome.

A gateway rejection caused by a competing request that shares the
idempotency key also returns the winner's outcome once it has committed.
Any other GatewayError reaches the caller and leaves the appointment untouched.
"""

import time
from datetime import datetime
from typing import Any, Callable, Optional

from cancellation_engine.config import settings
from cancellation_engine.engine.cancellation_state import (
    CancellationStateMachine,
    CancellationTrigger,
)
from cancellation_engine.engine.outcome_calculator import (
    compute_cancellation_outcome,
    unpaid_outcome,
)
from cancellation_engine.engine.policy_resolver import PolicyResolver
from cancellation_engine.errors import (
    AlreadyCancelled,
    ConcurrentModification,
    GatewayError,
    ValidationError,
)
from cancellation_engine.logging_context import get_request_logger, set_request_id
from cancellation_engine.money import epoch_millis, format_minor, utc_now
from cancellation_engine.notifications import (
    CANCELLATION,
    EMAIL,
    SMS,
    dispatch_best_effort,
)
from cancellation_engine.schemas.appointment_schema import (
    CANCELLABLE_STATUSES,
    Actor,
    Appointment,
    AppointmentStatus,
    AuditEntry,
    GatewayReference,
    PaymentStatus,
)
from cancellation_engine.schemas.outcome_schema import (
    CancellationOutcome,
    CancellationPreview,
    CancellationResult,
    RefundReceipt,
    RefundRequest,
)
from cancellation_engine.schemas.policy_schema import PolicySource, ResolvedPolicy
from cancellation_engine.stores.interfaces import (
    AppointmentStore,
    NotificationDispatcher,
    PaymentGateway,
    PolicyStore,
)

logger = get_request_logger(__name__)

CANCEL_ACTION = "cancel"
SETTLE_POLL_SECONDS = 0.05


def idempotency_key_for(appointment: Appointment) -> str:
    """Deterministic refund key: same appointment version, same key."""
    version = appointment.updated_at or appointment.created_at
    stamp = epoch_millis(version) if version is not None else 0
    return f"cancel:{appointment.id}:{stamp}"


def _outcome_label(status: AppointmentStatus) -> str:
    return status.value.replace("cancelled_", "")


def _committed_result(
    appointment: Appointment,
    trace: list[str],
    already_cancelled: bool = False,
    already_processed: bool = False,
) -> CancellationResult:
    """Rebuild the response for an appointment that is already cancelled."""
    entry = next(
        (a for a in reversed(appointment.audit) if a.action == CANCEL_ACTION), None
    )
    meta = entry.meta if entry else {}
    source = (appointment.policy_snapshot or {}).get("source")
    return CancellationResult(
        appointment_id=appointment.id,
        status=appointment.status,
        outcome=_outcome_label(appointment.status),
        refund_amount=int(meta.get("refund_amount", 0)),
        gateway_refund_id=meta.get("gateway_refund_id"),
        policy_source=PolicySource(source) if source else None,
        already_cancelled=already_cancelled,
        already_processed=already_processed,
        state_trace=trace,
    )


class RefundOrchestrator:
    """Drives one cancellation from request to committed state."""

    def __init__(
        self,
        appointments: AppointmentStore,
        policies: PolicyStore,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationDispatcher] = None,
        waitlist_matcher: Optional[Any] = None,
        clock: Callable[[], datetime] = utc_now,
        business_tz: str = settings.business.timezone,
        settle_timeout: float = settings.gateway.settle_timeout_seconds,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._appointments = appointments
        self._resolver = PolicyResolver(policies)
        self._gateway = gateway
        self._client_factory = None
        self._notifier = notifier
        self._waitlist_matcher = waitlist_matcher
        self._clock = clock
        self._business_tz = business_tz
        self._settle_timeout = settle_timeout
        self._sleep = sleep

    def _get_gateway(self) -> PaymentGateway:
        """Gateway in use; the Stripe client factory is built on first refund and owned here."""
        if self._gateway is None:
            from cancellation_engine.payments.stripe_gateway import (
                StripeClientFactory,
                StripeRefundGateway,
            )

            self._client_factory = StripeClientFactory()
            self._gateway = StripeRefundGateway(self._client_factory)
        return self._gateway

    def close(self) -> None:
        """Release gateway clients created by this orchestrator."""
        if self._client_factory is not None:
            self._client_factory.close()
            self._client_factory = None
            self._gateway = None

    def _load(self, tenant_id: str, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(tenant_id, appointment_id)
        if appointment is None:
            raise ValidationError(f"Appointment {appointment_id} not found")
        return appointment

    def preview(self, tenant_id: str, appointment_id: str) -> CancellationPreview:
        """Quote the refund a cancellation would produce right now. Writes nothing."""
        appointment = self._load(tenant_id, appointment_id)
        resolved = self._resolver.resolve(tenant_id, appointment.specialist_id)
        now = self._clock()
        if appointment.status == AppointmentStatus.RESERVED_UNPAID:
            outcome = unpaid_outcome()
        else:
            outcome = compute_cancellation_outcome(
                appointment, resolved.policy, now, self._business_tz
            )
        return CancellationPreview(
            appointment_id=appointment.id,
            refund_amount=outcome.refund_amount,
            status=outcome.outcome_status,
            reason_code=outcome.reason_code,
            within_grace_period=outcome.within_grace_period,
            policy=resolved.snapshot(),
            computed_at=now,
        )

    def cancel(
        self,
        tenant_id: str,
        appointment_id: str,
        requested_by: Actor = Actor.CUSTOMER,
        reason: Optional[str] = None,
        refill_slot: bool = False,
    ) -> CancellationResult:
        """
        Cancel an appointment and refund according to its policy.

        Safe to retry after a GatewayError: the retry derives the same
        idempotency key and the gateway returns the original refund.

        Raises:
            GatewayError: The refund failed and no other request has committed
                a cancellation; the appointment is unchanged.
            ValidationError: The appointment does not exist for this tenant.
        """
        set_request_id(f"cancel:{appointment_id}")
        sm = CancellationStateMachine(appointment_id)
        appointment = self._load(tenant_id, appointment_id)

        try:
            self._ensure_cancellable(appointment)
        except AlreadyCancelled:
            sm.transition(CancellationTrigger.ALREADY_CANCELLED)
            logger.info("Appointment %s already %s", appointment_id, appointment.status.value)
            return _committed_result(appointment, sm.get_state_trace(), already_cancelled=True)

        resolved = self._resolver.resolve(tenant_id, appointment.specialist_id)
        if appointment.status == AppointmentStatus.RESERVED_UNPAID:
            outcome = unpaid_outcome()
        else:
            outcome = compute_cancellation_outcome(
                appointment, resolved.policy, self._clock(), self._business_tz
            )
        sm.transition(CancellationTrigger.OUTCOME_READY)
        logger.info(
            "Cancellation outcome for %s: %s %s (%s, policy=%s)",
            appointment_id, outcome.outcome_status.value,
            format_minor(outcome.refund_amount, resolved.policy.currency),
            outcome.reason_code.value, resolved.source.value,
        )

        try:
            receipt = self._issue_refund(sm, appointment, outcome)
        except GatewayError as exc:
            current = self._committed_elsewhere(tenant_id, appointment_id, exc)
            if current is None:
                sm.transition(CancellationTrigger.GATEWAY_FAILED)
                logger.error(
                    "Refund failed for %s (key=%s); appointment left unchanged",
                    appointment_id, idempotency_key_for(appointment),
                )
                raise
            sm.transition(CancellationTrigger.WRITE_REJECTED)
            logger.warning(
                "Refund for %s rejected (%s) after another request committed %s",
                appointment_id, exc.code, current.status.value,
            )
            return _committed_result(current, sm.get_state_trace(), already_processed=True)

        try:
            updated = self._commit(
                tenant_id, appointment, outcome, resolved, receipt, requested_by, reason
            )
        except ConcurrentModification as exc:
            sm.transition(CancellationTrigger.WRITE_REJECTED)
            logger.warning("Lost cancellation race: %s", exc)
            current = self._appointments.get(tenant_id, appointment_id) or appointment
            return _committed_result(current, sm.get_state_trace(), already_processed=True)

        sm.transition(CancellationTrigger.WRITE_APPLIED)
        self._notify_cancelled(updated, outcome.refund_amount, reason)

        result = CancellationResult(
            appointment_id=updated.id,
            status=updated.status,
            outcome=_outcome_label(updated.status),
            refund_amount=outcome.refund_amount,
            gateway_refund_id=receipt.refund_id if receipt else None,
            policy_source=resolved.source,
            state_trace=sm.get_state_trace(),
        )
        if refill_slot and self._waitlist_matcher is not None:
            result.waitlist_match = self._waitlist_matcher.fill_freed_slot(tenant_id, updated.id)
        return result

    def _ensure_cancellable(self, appointment: Appointment) -> None:
        if appointment.status.is_cancelled:
            raise AlreadyCancelled(appointment)
        if appointment.status not in CANCELLABLE_STATUSES:
            raise ValidationError(
                f"Appointment {appointment.id} cannot be cancelled from {appointment.status.value}"
            )

    def _committed_elsewhere(
        self, tenant_id: str, appointment_id: str, error: GatewayError
    ) -> Optional[Appointment]:
        """
        The appointment as committed by a competing request, or None.

        An idempotency conflict means another request holds the refund key,
        so its commit is awaited for up to ``settle_timeout`` seconds. Other
        errors get a single re-read.
        """
        wait = self._settle_timeout if error.is_idempotency_conflict else 0.0
        deadline = time.monotonic() + wait
        while True:
            current = self._appointments.get(tenant_id, appointment_id)
            if current is not None and current.status.is_cancelled:
                return current
            if time.monotonic() >= deadline:
                return None
            self._sleep(SETTLE_POLL_SECONDS)

    def _issue_refund(
        self,
        sm: CancellationStateMachine,
        appointment: Appointment,
        outcome: CancellationOutcome,
    ) -> Optional[RefundReceipt]:
        payment = appointment.payment
        if outcome.refund_amount <= 0 or not payment.is_gateway_processed:
            sm.transition(CancellationTrigger.REFUND_NOT_NEEDED)
            return None

        reference = payment.reference
        request = RefundRequest(
            reference=reference.model_copy() if reference else GatewayReference(),
            amount_minor_units=outcome.refund_amount,
            idempotency_key=idempotency_key_for(appointment),
            connected_account_id=reference.connected_account_id if reference else None,
        )
        receipt = self._get_gateway().refund(request)
        sm.transition(CancellationTrigger.REFUND_SUCCEEDED)
        return receipt

    def _commit(
        self,
        tenant_id: str,
        appointment: Appointment,
        outcome: CancellationOutcome,
        resolved: ResolvedPolicy,
        receipt: Optional[RefundReceipt],
        requested_by: Actor,
        reason: Optional[str],
    ) -> Appointment:
        new_status = (
            outcome.outcome_status if outcome.refund_amount > 0
            else AppointmentStatus.CANCELLED_NO_REFUND
        )
        now = self._clock()
        patch: dict[str, Any] = {
            "cancelled_at": now,
            "cancelled_by": requested_by.value,
            "cancel_reason": reason,
            "policy_snapshot": resolved.snapshot(),
        }
        if receipt is not None:
            payment = appointment.payment.model_copy(deep=True)
            payment.status = (
                PaymentStatus.REFUNDED
                if outcome.refund_amount == payment.amount_total
                else PaymentStatus.PARTIAL_REFUNDED
            )
            payment.refund_ids = [*payment.refund_ids, receipt.refund_id]
            patch["payment"] = payment

        audit = AuditEntry(
            action=CANCEL_ACTION,
            at=now,
            by=requested_by.value,
            meta={
                "outcome": _outcome_label(new_status),
                "refund_amount": outcome.refund_amount,
                "reason_code": outcome.reason_code.value,
                "gateway_refund_id": receipt.refund_id if receipt else None,
                "idempotency_key": receipt.idempotency_key if receipt else None,
                "policy_source": resolved.source.value,
                "within_grace_period": outcome.within_grace_period,
                "reason": reason,
            },
        )
        updated = self._appointments.conditional_transition(
            tenant_id,
            appointment.id,
            expected_statuses=CANCELLABLE_STATUSES,
            new_status=new_status,
            patch=patch,
            audit=audit,
        )
        if updated is None:
            current = self._appointments.get(tenant_id, appointment.id)
            raise ConcurrentModification(
                appointment.id, current.status.value if current else None
            )
        return updated

    def _notify_cancelled(
        self, appointment: Appointment, refund_amount: int, reason: Optional[str]
    ) -> None:
        payload = {
            "appointment_id": appointment.id,
            "start": appointment.start.isoformat(),
            "status": appointment.status.value,
            "refund_amount": refund_amount,
            "reason": reason,
            "client_name": appointment.client.name,
        }
        dispatch_best_effort(
            self._notifier, EMAIL, CANCELLATION, {**payload, "to": appointment.client.email}
        )
        dispatch_best_effort(
            self._notifier, SMS, CANCELLATION, {**payload, "to": appointment.client.phone}
        )
