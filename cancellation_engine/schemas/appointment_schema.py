"""Appointment, payment and audit data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppointmentStatus(str, Enum):
    RESERVED_UNPAID = "reserved_unpaid"
    CONFIRMED = "confirmed"
    CANCELLED_FULL_REFUND = "cancelled_full_refund"
    CANCELLED_PARTIAL_REFUND = "cancelled_partial_refund"
    CANCELLED_NO_REFUND = "cancelled_no_refund"
    NO_SHOW = "no_show"

    @property
    def is_cancelled(self) -> bool:
        return self.value.startswith("cancelled_")


CANCELLABLE_STATUSES = frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.RESERVED_UNPAID})


class PaymentMode(str, Enum):
    PAY_NOW = "pay_now"
    DEPOSIT = "deposit"
    PAY_IN_SALON = "pay_in_salon"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIAL_REFUNDED = "partial_refunded"


class Actor(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    SYSTEM = "system"


class GatewayReference(BaseModel):
    """Identifiers needed to reverse a gateway charge."""
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    connected_account_id: Optional[str] = None

    def has_reference(self) -> bool:
        return bool(self.payment_intent_id or self.charge_id)


class Payment(BaseModel):
    """Payment sub-record. Amounts are integer minor units."""
    mode: PaymentMode = PaymentMode.PAY_NOW
    provider: str = "cash"
    status: PaymentStatus = PaymentStatus.UNPAID
    amount_total: int = 0
    amount_deposit: int = 0
    gateway_fee_cents: Optional[int] = None
    reference: Optional[GatewayReference] = None
    refund_ids: list[str] = Field(default_factory=list)

    @property
    def is_gateway_processed(self) -> bool:
        return self.provider != "cash"


class ClientContact(BaseModel):
    """Customer contact details used for notifications and duplicate checks."""
    name: str = "Client"
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None

    def has_contact(self) -> bool:
        return bool((self.email or "").strip() or (self.phone or "").strip())


class ServiceLine(BaseModel):
    """One service of a (possibly multi-service) booking."""
    service_id: str
    variant_name: str
    service_name: Optional[str] = None
    price: Optional[float] = None
    duration_min: Optional[int] = None


class AuditEntry(BaseModel):
    """Append-only record of a state transition."""
    action: str
    at: datetime = Field(default_factory=_utcnow)
    by: str = Actor.SYSTEM.value
    meta: dict[str, Any] = Field(default_factory=dict)


class TimeRange(BaseModel):
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and other.start < self.end


class Appointment(BaseModel):
    """A booked appointment as owned by the booking subsystem."""
    id: str
    tenant_id: str
    specialist_id: str
    start: datetime
    end: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    service_id: Optional[str] = None
    variant_name: Optional[str] = None
    services: list[ServiceLine] = Field(default_factory=list)
    total_duration: Optional[int] = None
    price: Optional[float] = None
    client: ClientContact = Field(default_factory=ClientContact)
    payment: Payment = Field(default_factory=Payment)
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    location_id: Optional[str] = None
    audit: list[AuditEntry] = Field(default_factory=list)
    policy_snapshot: Optional[dict[str, Any]] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    @property
    def primary_service(self) -> tuple[Optional[str], Optional[str]]:
        """(service_id, variant_name), falling back to the first service line."""
        first = self.services[0] if self.services else None
        service_id = self.service_id or (first.service_id if first else None)
        variant_name = self.variant_name or (first.variant_name if first else None)
        return service_id, variant_name


class AppointmentDraft(BaseModel):
    """Fields needed to create a new appointment; the store assigns id and timestamps."""
    specialist_id: str
    start: datetime
    end: datetime
    service_id: str
    variant_name: str
    services: list[ServiceLine] = Field(default_factory=list)
    total_duration: Optional[int] = None
    price: Optional[float] = None
    client: ClientContact
    payment: Payment
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    location_id: Optional[str] = None
    audit: list[AuditEntry] = Field(default_factory=list)

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)
