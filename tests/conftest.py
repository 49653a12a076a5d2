"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from cancellation_engine.engine.refund_orchestrator import RefundOrchestrator
from cancellation_engine.engine.waitlist_matcher import WaitlistMatcher
from cancellation_engine.notifications import LoggingNotificationDispatcher
from cancellation_engine.payments.memory_gateway import InMemoryPaymentGateway
from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    AppointmentStatus,
    ClientContact,
    GatewayReference,
    Payment,
    PaymentMode,
    PaymentStatus,
    ServiceLine,
)
from cancellation_engine.schemas.policy_schema import (
    CancellationPolicy,
    PartialRefund,
    PolicyScope,
)
from cancellation_engine.schemas.waitlist_schema import TimePreference, WaitlistEntry
from cancellation_engine.stores.memory import (
    InMemoryAppointmentStore,
    InMemoryPolicyStore,
    InMemoryWaitlistStore,
)

TENANT = "salon_1"
OTHER_TENANT = "salon_2"
SPECIALIST = "spec_1"
TZ = "Europe/London"

# Saturday morning, GMT (no DST offset in mid-March)
NOW = datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def appointment_store(clock):
    return InMemoryAppointmentStore(unpaid_hold_minutes=3, clock=clock)


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def waitlist_store(clock):
    return InMemoryWaitlistStore(clock=clock)


@pytest.fixture
def gateway():
    return InMemoryPaymentGateway()


@pytest.fixture
def notifier():
    return LoggingNotificationDispatcher()


@pytest.fixture
def matcher(appointment_store, waitlist_store, notifier, clock):
    return WaitlistMatcher(
        appointment_store,
        waitlist_store,
        notifier,
        business_tz=TZ,
        candidate_limit=25,
        default_duration_minutes=60,
        clock=clock,
    )


@pytest.fixture
def orchestrator(appointment_store, policy_store, gateway, notifier, matcher, clock):
    return RefundOrchestrator(
        appointment_store,
        policy_store,
        gateway=gateway,
        notifier=notifier,
        waitlist_matcher=matcher,
        clock=clock,
        business_tz=TZ,
    )


def make_appointment(
    appointment_id: str = "appt_1",
    hours_ahead: float = 48,
    total: int = 10000,
    mode: PaymentMode = PaymentMode.PAY_NOW,
    deposit: int = 0,
    provider: str = "stripe",
    fee: Optional[int] = 0,
    price: Optional[float] = None,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    created_ago: timedelta = timedelta(days=3),
    now: datetime = NOW,
    start: Optional[datetime] = None,
    duration_minutes: int = 60,
    tenant_id: str = TENANT,
    specialist_id: str = SPECIALIST,
    service_id: Optional[str] = "svc_lashes",
    variant_name: Optional[str] = "Classic",
    services: Optional[list[ServiceLine]] = None,
    email: Optional[str] = "jane@example.com",
    phone: Optional[str] = "07700 900123",
    connected_account_id: Optional[str] = None,
) -> Appointment:
    """Helper to create an Appointment with sensible defaults.

    ``fee=0`` marks the gateway fee as known and zero; pass ``None`` to model
    a legacy record with no stored fee.
    """
    start = start or now + timedelta(hours=hours_ahead)
    return Appointment(
        id=appointment_id,
        tenant_id=tenant_id,
        specialist_id=specialist_id,
        start=start,
        end=start + timedelta(minutes=duration_minutes),
        created_at=now - created_ago,
        service_id=service_id,
        variant_name=variant_name,
        services=services or [],
        price=price,
        client=ClientContact(name="Jane Doe", email=email, phone=phone),
        payment=Payment(
            mode=mode,
            provider=provider,
            status=PaymentStatus.PAID,
            amount_total=total,
            amount_deposit=deposit,
            gateway_fee_cents=fee if provider != "cash" else None,
            reference=GatewayReference(
                payment_intent_id=f"pi_{appointment_id}",
                connected_account_id=connected_account_id,
            ),
        ),
        status=status,
    )


def make_policy(
    free_cancel_hours: float = 24,
    no_refund_hours: float = 2,
    percent: Optional[float] = 50,
    fixed: Optional[int] = None,
    grace_minutes: int = 15,
    scope: PolicyScope = PolicyScope.SALON,
    specialist_id: Optional[str] = None,
) -> CancellationPolicy:
    """Helper to create a CancellationPolicy; ``fixed`` wins over ``percent``."""
    partial = PartialRefund(fixed=fixed) if fixed is not None else PartialRefund(percent=percent)
    return CancellationPolicy(
        scope=scope,
        specialist_id=specialist_id,
        free_cancel_hours=free_cancel_hours,
        no_refund_hours=no_refund_hours,
        partial_refund=partial,
        grace_minutes=grace_minutes,
    )


def make_waitlist_entry(
    entry_id: str = "wl_1",
    priority: int = 0,
    created_ago: timedelta = timedelta(days=1),
    now: datetime = NOW,
    tenant_id: str = TENANT,
    service_id: str = "svc_lashes",
    variant_name: str = "Classic",
    specialist_id: Optional[str] = None,
    desired_date: Optional[str] = None,
    time_preference: TimePreference = TimePreference.ANY,
    name: str = "Sam Lee",
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> WaitlistEntry:
    """Helper to create a WaitlistEntry; contact defaults to a per-entry email."""
    if email is None and phone is None:
        email = f"{entry_id}@example.com"
    return WaitlistEntry(
        id=entry_id,
        tenant_id=tenant_id,
        service_id=service_id,
        variant_name=variant_name,
        specialist_id=specialist_id,
        desired_date=desired_date,
        time_preference=time_preference,
        client=ClientContact(name=name, email=email, phone=phone),
        priority=priority,
        created_at=now - created_ago,
    )
