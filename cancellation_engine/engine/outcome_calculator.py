"""
Pure cancellation outcome calculation.

Turns an appointment snapshot, a resolved policy and the current time into
a refund amount and the terminal status the appointment should take. No
I/O and no side effects, so it backs both the real cancellation and the
read-only preview.

Decision precedence:
    hours_until_start >= free_cancel_hours  -> full refund of the refundable base
    hours_until_start <  no_refund_hours    -> nothing
    otherwise                               -> fixed amount, or percent of the base

Usage:
    outcome = compute_cancellation_outcome(appointment, policy, now=utc_now())
    outcome.refund_amount, outcome.outcome_status
"""

import logging
from datetime import datetime
from typing import Optional

from cancellation_engine.money import (
    clamp_non_negative,
    hours_between,
    hours_until,
    percent_of,
    to_minor_units,
)
from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    AppointmentStatus,
    Payment,
    PaymentMode,
)
from cancellation_engine.schemas.outcome_schema import CancellationOutcome, OutcomeReason
from cancellation_engine.schemas.policy_schema import CancellationPolicy

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60


def payable_base(payment: Payment) -> int:
    """Amount actually at risk: the deposit for deposit bookings, else the total."""
    if payment.mode == PaymentMode.DEPOSIT:
        return clamp_non_negative(payment.amount_deposit or 0)
    return clamp_non_negative(payment.amount_total or 0)


def refundable_base(payment: Payment) -> tuple[int, bool]:
    """Payable base minus any known non-refundable gateway fee.

    Returns:
        (amount, fee_known). When the fee is unknown the caller must cap the
        final refund at the listed price.
    """
    base = payable_base(payment)
    if payment.is_gateway_processed and payment.gateway_fee_cents is not None:
        return clamp_non_negative(base - payment.gateway_fee_cents), True
    return base, not payment.is_gateway_processed


def within_grace_period(
    created_at: Optional[datetime], now: datetime, grace_minutes: int
) -> bool:
    """Whether ``now`` falls inside the grace window that follows booking creation."""
    if created_at is None or grace_minutes <= 0:
        return False
    elapsed_hours = hours_between(created_at, now)
    return 0 <= elapsed_hours <= grace_minutes / MINUTES_PER_HOUR


def compute_cancellation_outcome(
    appointment: Appointment,
    policy: CancellationPolicy,
    now: datetime,
    business_tz: Optional[str] = None,
) -> CancellationOutcome:
    """
    Compute the refund and outcome status for cancelling ``appointment`` at ``now``.

    A fixed partial refund is capped at the refundable base, so it can come
    out below the configured amount when less than that was paid.

    Args:
        appointment: Snapshot of the appointment (start, created_at, payment, price).
        policy: The resolved cancellation policy.
        now: Current time; naive values are treated as UTC.
        business_tz: Business timezone. Accepted for display and future
            day-boundary rules; window arithmetic is plain elapsed time.

    Returns:
        The monetary outcome. Never raises on a well-formed appointment.
    """
    payment = appointment.payment
    base, fee_known = refundable_base(payment)
    hours_left = hours_until(appointment.start, now)

    if hours_left >= policy.free_cancel_hours:
        status = AppointmentStatus.CANCELLED_FULL_REFUND
        reason = OutcomeReason.FREE_WINDOW
        refund = base
    elif hours_left < policy.no_refund_hours:
        status = AppointmentStatus.CANCELLED_NO_REFUND
        reason = OutcomeReason.NO_REFUND_WINDOW
        refund = 0
    else:
        status = AppointmentStatus.CANCELLED_PARTIAL_REFUND
        reason = OutcomeReason.PARTIAL_WINDOW
        if policy.partial_refund.fixed is not None:
            # never more than was actually paid, net of fees
            refund = min(clamp_non_negative(policy.partial_refund.fixed), base)
        else:
            refund = percent_of(base, policy.partial_refund.percent or 0)

    cap_applied = False
    if not fee_known and appointment.price is not None:
        price_cap = to_minor_units(appointment.price)
        if price_cap >= 0 and refund > price_cap:
            logger.debug(
                "Capping refund for %s at listed price: %d -> %d",
                appointment.id, refund, price_cap,
            )
            refund = price_cap
            cap_applied = True

    return CancellationOutcome(
        refund_amount=refund,
        outcome_status=status,
        reason_code=reason,
        refundable_base=base,
        hours_until_start=hours_left,
        within_grace_period=within_grace_period(
            appointment.created_at, now, policy.grace_minutes
        ),
        price_cap_applied=cap_applied,
    )


def unpaid_outcome() -> CancellationOutcome:
    """Outcome for an appointment that was never paid: nothing to refund."""
    return CancellationOutcome(
        refund_amount=0,
        outcome_status=AppointmentStatus.CANCELLED_NO_REFUND,
        reason_code=OutcomeReason.UNPAID_APPOINTMENT,
    )
