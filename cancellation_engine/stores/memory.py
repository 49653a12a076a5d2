"""
In-memory reference stores.

In production these would be backed by the booking database, with the
conditional operations expressed as a single filtered update (or a unique
index over specialist + active time range). Here a lock makes each
check-and-write atomic, which is the property the engine relies on.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from cancellation_engine.config import settings
from cancellation_engine.errors import SlotTaken, ValidationError
from cancellation_engine.money import ensure_utc, utc_now
from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AuditEntry,
    ClientContact,
    TimeRange,
)
from cancellation_engine.schemas.policy_schema import CancellationPolicy, PolicyScope
from cancellation_engine.schemas.waitlist_schema import (
    MatchCriteria,
    WaitlistEntry,
    WaitlistStatus,
)
from cancellation_engine.utils import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class InMemoryAppointmentStore:
    """Appointment store with compare-and-swap transitions and conflict-checked creates."""

    def __init__(
        self,
        unpaid_hold_minutes: int = settings.waitlist.unpaid_hold_minutes,
        clock: Clock = utc_now,
    ) -> None:
        self._appointments: dict[str, Appointment] = {}
        self._lock = threading.Lock()
        self._unpaid_hold = timedelta(minutes=unpaid_hold_minutes)
        self._clock = clock

    def add(self, appointment: Appointment) -> Appointment:
        """Seed an existing appointment."""
        with self._lock:
            self._appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment

    def get(self, tenant_id: str, appointment_id: str) -> Optional[Appointment]:
        appt = self._appointments.get(appointment_id)
        if appt is None or appt.tenant_id != tenant_id:
            return None
        return appt.model_copy(deep=True)

    def all(self, tenant_id: str) -> list[Appointment]:
        return [
            a.model_copy(deep=True)
            for a in self._appointments.values()
            if a.tenant_id == tenant_id
        ]

    def _is_active(self, appt: Appointment, now: datetime) -> bool:
        """Cancelled and no-show bookings never block; unpaid holds block only while fresh."""
        if appt.status.is_cancelled or appt.status == AppointmentStatus.NO_SHOW:
            return False
        if appt.status == AppointmentStatus.RESERVED_UNPAID:
            if appt.created_at is None:
                return False
            return ensure_utc(appt.created_at) >= now - self._unpaid_hold
        return True

    def _conflict_locked(
        self,
        tenant_id: str,
        specialist_id: str,
        time_range: TimeRange,
        exclude_id: Optional[str],
    ) -> Optional[Appointment]:
        now = self._clock()
        for appt in self._appointments.values():
            if (
                appt.tenant_id == tenant_id
                and appt.id != exclude_id
                and appt.specialist_id == specialist_id
                and appt.time_range.overlaps(time_range)
                and self._is_active(appt, now)
            ):
                return appt
        return None

    def find_active_conflict(
        self,
        tenant_id: str,
        specialist_id: str,
        time_range: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        with self._lock:
            found = self._conflict_locked(tenant_id, specialist_id, time_range, exclude_id)
            return found.model_copy(deep=True) if found else None

    def find_client_conflict(
        self, tenant_id: str, contact: ClientContact, time_range: TimeRange
    ) -> Optional[Appointment]:
        email = normalize_email(contact.email)
        phone = normalize_phone(contact.phone or "")
        if not email and not phone:
            return None
        now = self._clock()
        with self._lock:
            for appt in self._appointments.values():
                if appt.tenant_id != tenant_id or not self._is_active(appt, now):
                    continue
                if not appt.time_range.overlaps(time_range):
                    continue
                same_email = bool(email) and normalize_email(appt.client.email) == email
                same_phone = bool(phone) and normalize_phone(appt.client.phone or "") == phone
                if same_email or same_phone:
                    return appt.model_copy(deep=True)
        return None

    def conditional_transition(
        self,
        tenant_id: str,
        appointment_id: str,
        expected_statuses: Iterable[AppointmentStatus],
        new_status: AppointmentStatus,
        patch: dict[str, Any],
        audit: Optional[AuditEntry] = None,
    ) -> Optional[Appointment]:
        expected = set(expected_statuses)
        with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None or current.tenant_id != tenant_id:
                return None
            if current.status not in expected:
                logger.info(
                    "Conditional transition on %s rejected: status is %s",
                    appointment_id, current.status.value,
                )
                return None
            update = dict(patch)
            update["status"] = new_status
            update["updated_at"] = self._clock()
            if audit is not None:
                update["audit"] = [*current.audit, audit]
            updated = current.model_copy(update=update, deep=True)
            self._appointments[appointment_id] = updated
            logger.debug(
                "Appointment %s: %s -> %s",
                appointment_id, current.status.value, new_status.value,
            )
            return updated.model_copy(deep=True)

    def create(self, tenant_id: str, draft: AppointmentDraft) -> Appointment:
        with self._lock:
            conflict = self._conflict_locked(
                tenant_id, draft.specialist_id, draft.time_range, exclude_id=None
            )
            if conflict is not None:
                raise SlotTaken(draft.specialist_id, conflict.id)
            now = self._clock()
            appt = Appointment(
                id=f"appt_{uuid.uuid4().hex[:12]}",
                tenant_id=tenant_id,
                created_at=now,
                updated_at=now,
                **draft.model_dump(),
            )
            self._appointments[appt.id] = appt
        logger.info(
            "Appointment created: %s for specialist %s at %s",
            appt.id, appt.specialist_id, appt.start.isoformat(),
        )
        return appt.model_copy(deep=True)

    def reset(self) -> None:
        """Clear all appointments. Used by test fixtures for isolation."""
        with self._lock:
            self._appointments.clear()


class InMemoryPolicyStore:
    """Policy documents keyed by tenant. Stored as raw dicts, validated on read."""

    def __init__(self) -> None:
        self._salon: dict[str, dict[str, Any]] = {}
        self._specialist: dict[tuple[str, str], dict[str, Any]] = {}

    def save_policy(
        self, tenant_id: str, policy: Union[CancellationPolicy, dict[str, Any]]
    ) -> CancellationPolicy:
        """Validated upsert, keyed by scope (and specialist for specialist scope)."""
        try:
            validated = (
                policy if isinstance(policy, CancellationPolicy)
                else CancellationPolicy.model_validate(policy)
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid cancellation policy: {exc}") from exc

        document = validated.model_dump(mode="json")
        if validated.scope == PolicyScope.SPECIALIST:
            self._specialist[(tenant_id, validated.specialist_id or "")] = document
        else:
            self._salon[tenant_id] = document
        logger.info(
            "Saved %s cancellation policy for tenant %s", validated.scope.value, tenant_id
        )
        return validated

    def put_raw(
        self, tenant_id: str, document: dict[str, Any], specialist_id: Optional[str] = None
    ) -> None:
        """Store an unvalidated document, as legacy data would be."""
        if specialist_id:
            self._specialist[(tenant_id, specialist_id)] = dict(document)
        else:
            self._salon[tenant_id] = dict(document)

    def delete_specialist_policy(self, tenant_id: str, specialist_id: str) -> bool:
        """Remove a specialist override so the salon policy applies again."""
        return self._specialist.pop((tenant_id, specialist_id), None) is not None

    def find_specialist_policy(
        self, tenant_id: str, specialist_id: str
    ) -> Optional[CancellationPolicy]:
        document = self._specialist.get((tenant_id, specialist_id))
        return CancellationPolicy.model_validate(document) if document else None

    def find_business_policy(self, tenant_id: str) -> Optional[CancellationPolicy]:
        document = self._salon.get(tenant_id)
        return CancellationPolicy.model_validate(document) if document else None


class InMemoryWaitlistStore:
    """Waitlist entries with a conditional active -> converted update."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._entries: dict[str, WaitlistEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        with self._lock:
            self._entries[entry.id] = entry.model_copy(deep=True)
        return entry

    def get(self, tenant_id: str, entry_id: str) -> Optional[WaitlistEntry]:
        entry = self._entries.get(entry_id)
        if entry is None or entry.tenant_id != tenant_id:
            return None
        return entry.model_copy(deep=True)

    def find_active_candidates(
        self, tenant_id: str, criteria: MatchCriteria, limit: int
    ) -> list[WaitlistEntry]:
        """Matching active entries, highest priority first, oldest first within a tier."""
        matches = [
            e for e in self._entries.values()
            if e.tenant_id == tenant_id and criteria.accepts(e)
        ]
        matches.sort(key=lambda e: (-e.priority, ensure_utc(e.created_at)))
        return [e.model_copy(deep=True) for e in matches[:limit]]

    def mark_converted(
        self,
        tenant_id: str,
        entry_id: str,
        appointment_id: str,
        audit: Optional[AuditEntry] = None,
    ) -> bool:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.tenant_id != tenant_id:
                return False
            if entry.status != WaitlistStatus.ACTIVE:
                return False
            now = self._clock()
            self._entries[entry_id] = entry.model_copy(
                update={
                    "status": WaitlistStatus.CONVERTED,
                    "notified_at": now,
                    "converted_at": now,
                    "converted_appointment_id": appointment_id,
                    "audit": [*entry.audit, audit] if audit else entry.audit,
                },
                deep=True,
            )
        logger.info("Waitlist entry %s converted to %s", entry_id, appointment_id)
        return True

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
