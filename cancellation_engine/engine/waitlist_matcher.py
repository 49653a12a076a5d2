"""
Waitlist reallocation for freed slots.

Runs synchronously when a slot is freed (cancellation or no-show). Picks
the best-matching active waitlist entry and converts it into a confirmed
appointment in the freed slot. A slot fills at most one waiting customer.

Candidate order is priority descending, then oldest entry first. Before
each commit the specialist + time window is re-checked; if anyone took the
slot in the meantime the whole attempt ends with ``slot_already_taken``.
The create itself is conflict-checked by the store, which closes the gap
between the re-check and the write. The entry is then converted only if it
is still active; otherwise the new booking is released and the next
candidate is tried.

Usage:
    matcher = WaitlistMatcher(appointment_store, waitlist_store, notifier)
    result = matcher.fill_freed_slot(tenant_id, cancelled_appointment_id)
    if result.filled:
        ...
"""

from datetime import datetime
from typing import Callable, Optional

from cancellation_engine.config import settings
from cancellation_engine.errors import SlotTaken
from cancellation_engine.logging_context import get_request_logger, set_request_id
from cancellation_engine.money import hours_between, local_date, local_hour, to_minor_units, utc_now
from cancellation_engine.notifications import (
    EMAIL,
    SMS,
    WAITLIST_CONFIRMATION,
    WAITLIST_FILL_SMS,
    dispatch_best_effort,
)
from cancellation_engine.schemas.appointment_schema import (
    Actor,
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AuditEntry,
    ClientContact,
    Payment,
    PaymentMode,
    PaymentStatus,
    ServiceLine,
)
from cancellation_engine.schemas.outcome_schema import MatchReason, MatchResult
from cancellation_engine.schemas.waitlist_schema import (
    MatchCriteria,
    TimePreference,
    WaitlistEntry,
)
from cancellation_engine.stores.interfaces import (
    AppointmentStore,
    NotificationDispatcher,
    WaitlistStore,
)

logger = get_request_logger(__name__)

MORNING_ENDS_AT = 12
AFTERNOON_ENDS_AT = 17
MINUTES_PER_HOUR = 60

AUTO_FILL_ACTION = "waitlist_auto_fill"
CONVERTED_ACTION = "waitlist_auto_fill_converted"
RELEASED_ACTION = "waitlist_auto_fill_released"


def time_bucket(start: datetime, tz_name: str) -> TimePreference:
    """Morning before 12:00, afternoon before 17:00, evening after, in local time."""
    hour = local_hour(start, tz_name)
    if hour < MORNING_ENDS_AT:
        return TimePreference.MORNING
    if hour < AFTERNOON_ENDS_AT:
        return TimePreference.AFTERNOON
    return TimePreference.EVENING


def _frees_slot(appointment: Appointment) -> bool:
    return appointment.status.is_cancelled or appointment.status == AppointmentStatus.NO_SHOW


class WaitlistMatcher:
    """Converts the best waiting customer into a booking for a freed slot."""

    def __init__(
        self,
        appointments: AppointmentStore,
        waitlist: WaitlistStore,
        notifier: Optional[NotificationDispatcher] = None,
        business_tz: str = settings.business.timezone,
        candidate_limit: int = settings.waitlist.candidate_limit,
        default_duration_minutes: int = settings.waitlist.default_duration_minutes,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._appointments = appointments
        self._waitlist = waitlist
        self._notifier = notifier
        self._business_tz = business_tz
        self._candidate_limit = candidate_limit
        self._default_duration = default_duration_minutes
        self._clock = clock

    def build_criteria(self, freed: Appointment) -> Optional[MatchCriteria]:
        """What the freed slot offers, or None if the booking shape is unsupported."""
        service_id, variant_name = freed.primary_service
        if not service_id or not variant_name:
            return None
        return MatchCriteria(
            service_id=service_id,
            variant_name=variant_name,
            specialist_id=freed.specialist_id,
            desired_date=local_date(freed.start, self._business_tz).isoformat(),
            time_bucket=time_bucket(freed.start, self._business_tz),
        )

    def fill_freed_slot(self, tenant_id: str, appointment_id: str) -> MatchResult:
        """
        Try to give the slot held by ``appointment_id`` to a waiting customer.

        Never raises: every outcome, including store failures, is reported
        through ``MatchResult.reason``.
        """
        if not tenant_id or not appointment_id:
            return MatchResult(filled=False, reason=MatchReason.MISSING_CONTEXT)

        set_request_id(f"waitlist:{appointment_id}")
        try:
            return self._fill(tenant_id, appointment_id)
        except Exception:
            logger.exception("Waitlist auto-fill failed for %s", appointment_id)
            return MatchResult(filled=False, reason=MatchReason.AUTOFILL_ERROR)

    def _fill(self, tenant_id: str, appointment_id: str) -> MatchResult:
        freed = self._appointments.get(tenant_id, appointment_id)
        if freed is None:
            return MatchResult(filled=False, reason=MatchReason.APPOINTMENT_NOT_FOUND)
        if not _frees_slot(freed):
            return MatchResult(filled=False, reason=MatchReason.APPOINTMENT_NOT_CANCELLED)

        criteria = self.build_criteria(freed)
        if criteria is None:
            return MatchResult(filled=False, reason=MatchReason.UNSUPPORTED_SERVICE_SHAPE)

        candidates = self._waitlist.find_active_candidates(
            tenant_id, criteria, self._candidate_limit
        )
        if not candidates:
            logger.info("No waitlist candidates for slot %s", appointment_id)
            return MatchResult(filled=False, reason=MatchReason.NO_WAITLIST_CANDIDATES)

        skipped: list[str] = []
        for candidate in candidates:
            if not candidate.client.has_contact():
                logger.debug("Skipping %s: no contact details", candidate.id)
                skipped.append(candidate.id)
                continue

            existing = self._appointments.find_client_conflict(
                tenant_id, candidate.client, freed.time_range
            )
            if existing is not None:
                logger.debug("Skipping %s: client already booked (%s)", candidate.id, existing.id)
                skipped.append(candidate.id)
                continue

            conflict = self._appointments.find_active_conflict(
                tenant_id, freed.specialist_id, freed.time_range, exclude_id=freed.id
            )
            if conflict is not None:
                logger.info("Slot %s already retaken by %s", appointment_id, conflict.id)
                return MatchResult(
                    filled=False, reason=MatchReason.SLOT_ALREADY_TAKEN, skipped_entry_ids=skipped
                )

            try:
                created = self._appointments.create(tenant_id, self._draft_for(freed, candidate))
            except SlotTaken as exc:
                logger.info("Slot %s taken during create: %s", appointment_id, exc)
                return MatchResult(
                    filled=False, reason=MatchReason.SLOT_ALREADY_TAKEN, skipped_entry_ids=skipped
                )

            converted = self._waitlist.mark_converted(
                tenant_id,
                candidate.id,
                created.id,
                AuditEntry(
                    action=CONVERTED_ACTION,
                    at=self._clock(),
                    by=Actor.SYSTEM.value,
                    meta={
                        "converted_appointment_id": created.id,
                        "cancelled_appointment_id": freed.id,
                    },
                ),
            )
            if not converted:
                logger.warning(
                    "Waitlist entry %s was no longer active; releasing %s",
                    candidate.id, created.id,
                )
                self._release(tenant_id, created, candidate)
                skipped.append(candidate.id)
                continue

            self._notify_filled(created, candidate)
            logger.info(
                "Slot %s filled from waitlist entry %s -> %s",
                appointment_id, candidate.id, created.id,
            )
            return MatchResult(
                filled=True,
                reason=MatchReason.FILLED,
                appointment_id=created.id,
                waitlist_entry_id=candidate.id,
                skipped_entry_ids=skipped,
            )

        return MatchResult(
            filled=False, reason=MatchReason.NO_ELIGIBLE_CANDIDATES, skipped_entry_ids=skipped
        )

    def _release(self, tenant_id: str, created: Appointment, candidate: WaitlistEntry) -> None:
        """Cancel a booking whose waitlist entry could not be converted."""
        now = self._clock()
        released = self._appointments.conditional_transition(
            tenant_id,
            created.id,
            expected_statuses={AppointmentStatus.CONFIRMED},
            new_status=AppointmentStatus.CANCELLED_NO_REFUND,
            patch={
                "cancelled_at": now,
                "cancelled_by": Actor.SYSTEM.value,
                "cancel_reason": "waitlist entry no longer active",
            },
            audit=AuditEntry(
                action=RELEASED_ACTION,
                at=now,
                by=Actor.SYSTEM.value,
                meta={"waitlist_entry_id": candidate.id},
            ),
        )
        if released is None:
            logger.error("Could not release %s after failed conversion", created.id)

    def _duration_minutes(self, freed: Appointment) -> int:
        if freed.total_duration:
            return freed.total_duration
        if freed.services and freed.services[0].duration_min:
            return freed.services[0].duration_min
        span = round(hours_between(freed.start, freed.end) * MINUTES_PER_HOUR)
        return span if span > 0 else self._default_duration

    def _price(self, freed: Appointment) -> float:
        if freed.price:
            return float(freed.price)
        if freed.services and freed.services[0].price:
            return float(freed.services[0].price)
        return 0.0

    def _draft_for(self, freed: Appointment, candidate: WaitlistEntry) -> AppointmentDraft:
        service_id, variant_name = freed.primary_service
        duration = self._duration_minutes(freed)
        price = self._price(freed)
        service_name = freed.services[0].service_name if freed.services else None
        return AppointmentDraft(
            specialist_id=freed.specialist_id,
            start=freed.start,
            end=freed.end,
            service_id=service_id,
            variant_name=variant_name,
            services=[
                ServiceLine(
                    service_id=service_id,
                    variant_name=variant_name,
                    service_name=service_name or variant_name,
                    price=price,
                    duration_min=duration,
                )
            ],
            total_duration=duration,
            price=price,
            client=ClientContact(
                name=candidate.client.name or "Client",
                email=(candidate.client.email or "").strip().lower() or None,
                phone=candidate.client.phone,
                user_id=candidate.client.user_id,
            ),
            payment=Payment(
                mode=PaymentMode.PAY_IN_SALON,
                provider="cash",
                status=PaymentStatus.UNPAID,
                amount_total=to_minor_units(price),
            ),
            status=AppointmentStatus.CONFIRMED,
            location_id=freed.location_id,
            audit=[
                AuditEntry(
                    action=AUTO_FILL_ACTION,
                    at=self._clock(),
                    by=Actor.SYSTEM.value,
                    meta={
                        "waitlist_entry_id": candidate.id,
                        "cancelled_appointment_id": freed.id,
                    },
                )
            ],
        )

    def _notify_filled(self, created: Appointment, candidate: WaitlistEntry) -> None:
        payload = {
            "appointment_id": created.id,
            "waitlist_entry_id": candidate.id,
            "client_name": created.client.name,
            "service_name": created.services[0].service_name if created.services else None,
            "specialist_id": created.specialist_id,
            "start": created.start.isoformat(),
            "timezone": self._business_tz,
        }
        dispatch_best_effort(
            self._notifier, EMAIL, WAITLIST_CONFIRMATION, {**payload, "to": created.client.email}
        )
        dispatch_best_effort(
            self._notifier, SMS, WAITLIST_FILL_SMS, {**payload, "to": created.client.phone}
        )
