"""
Collaborator interfaces consumed by the engine.

Every call takes an explicit ``tenant_id``; nothing relies on an ambient
tenant context. Amounts crossing these boundaries are integer minor units.
"""

from typing import Any, Iterable, Optional, Protocol

from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AuditEntry,
    ClientContact,
    TimeRange,
)
from cancellation_engine.schemas.outcome_schema import RefundReceipt, RefundRequest
from cancellation_engine.schemas.policy_schema import CancellationPolicy
from cancellation_engine.schemas.waitlist_schema import MatchCriteria, WaitlistEntry


class AppointmentStore(Protocol):
    def get(self, tenant_id: str, appointment_id: str) -> Optional[Appointment]:
        ...

    def find_active_conflict(
        self,
        tenant_id: str,
        specialist_id: str,
        time_range: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        ...

    def find_client_conflict(
        self, tenant_id: str, contact: ClientContact, time_range: TimeRange
    ) -> Optional[Appointment]:
        ...

    def conditional_transition(
        self,
        tenant_id: str,
        appointment_id: str,
        expected_statuses: Iterable[AppointmentStatus],
        new_status: AppointmentStatus,
        patch: dict[str, Any],
        audit: Optional[AuditEntry] = None,
    ) -> Optional[Appointment]:
        """Apply the transition only if the current status is expected.

        Returns the updated appointment, or None when the condition failed.
        """
        ...

    def create(self, tenant_id: str, draft: AppointmentDraft) -> Appointment:
        """Create an appointment. Raises SlotTaken if the window is occupied."""
        ...


class PolicyStore(Protocol):
    def find_specialist_policy(
        self, tenant_id: str, specialist_id: str
    ) -> Optional[CancellationPolicy]:
        ...

    def find_business_policy(self, tenant_id: str) -> Optional[CancellationPolicy]:
        ...


class PaymentGateway(Protocol):
    def refund(self, request: RefundRequest) -> RefundReceipt:
        """Reverse a charge. Raises GatewayError on failure."""
        ...


class WaitlistStore(Protocol):
    def find_active_candidates(
        self, tenant_id: str, criteria: MatchCriteria, limit: int
    ) -> list[WaitlistEntry]:
        ...

    def mark_converted(
        self,
        tenant_id: str,
        entry_id: str,
        appointment_id: str,
        audit: Optional[AuditEntry] = None,
    ) -> bool:
        """Convert an entry if it is still active. Returns False otherwise."""
        ...


class NotificationDispatcher(Protocol):
    def notify(self, channel: str, template_kind: str, payload: dict[str, Any]) -> None:
        ...
