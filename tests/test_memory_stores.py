"""Tests for the in-memory stores and payment gateway."""

from datetime import timedelta

import pytest

from cancellation_engine.errors import GatewayError, SlotTaken
from cancellation_engine.payments.memory_gateway import InMemoryPaymentGateway
from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AuditEntry,
    ClientContact,
    GatewayReference,
    Payment,
)
from cancellation_engine.schemas.outcome_schema import RefundRequest
from cancellation_engine.schemas.waitlist_schema import MatchCriteria, TimePreference, WaitlistEntry
from tests.conftest import (
    NOW,
    OTHER_TENANT,
    SPECIALIST,
    TENANT,
    make_appointment,
    make_waitlist_entry,
)


def _draft(hours_ahead=48, specialist_id=SPECIALIST):
    start = NOW + timedelta(hours=hours_ahead)
    return AppointmentDraft(
        specialist_id=specialist_id,
        start=start,
        end=start + timedelta(hours=1),
        service_id="svc_lashes",
        variant_name="Classic",
        client=ClientContact(name="Sam", email="sam@example.com"),
        payment=Payment(),
    )


def _refund(key="cancel:appt_1:1", amount=1000, **reference):
    reference.setdefault("payment_intent_id", "pi_1")
    return RefundRequest(
        reference=GatewayReference(**reference),
        amount_minor_units=amount,
        idempotency_key=key,
    )


class TestAppointmentStore:
    def test_get_is_tenant_scoped(self, appointment_store):
        appointment_store.add(make_appointment())
        assert appointment_store.get(TENANT, "appt_1") is not None
        assert appointment_store.get(OTHER_TENANT, "appt_1") is None

    def test_get_returns_copies(self, appointment_store):
        appointment_store.add(make_appointment())
        copy = appointment_store.get(TENANT, "appt_1")
        copy.status = AppointmentStatus.NO_SHOW
        assert appointment_store.get(TENANT, "appt_1").status == AppointmentStatus.CONFIRMED

    def test_conditional_transition_applies(self, appointment_store, clock):
        appointment_store.add(make_appointment())
        updated = appointment_store.conditional_transition(
            TENANT, "appt_1",
            expected_statuses={AppointmentStatus.CONFIRMED},
            new_status=AppointmentStatus.CANCELLED_NO_REFUND,
            patch={"cancel_reason": "test"},
            audit=AuditEntry(action="cancel"),
        )
        assert updated.status == AppointmentStatus.CANCELLED_NO_REFUND
        assert updated.cancel_reason == "test"
        assert updated.updated_at == clock.now
        assert [a.action for a in updated.audit] == ["cancel"]

    def test_conditional_transition_rejects_unexpected_status(self, appointment_store):
        appointment_store.add(make_appointment(status=AppointmentStatus.CANCELLED_FULL_REFUND))
        result = appointment_store.conditional_transition(
            TENANT, "appt_1",
            expected_statuses={AppointmentStatus.CONFIRMED},
            new_status=AppointmentStatus.CANCELLED_NO_REFUND,
            patch={},
        )
        assert result is None
        stored = appointment_store.get(TENANT, "appt_1")
        assert stored.status == AppointmentStatus.CANCELLED_FULL_REFUND

    def test_conditional_transition_other_tenant(self, appointment_store):
        appointment_store.add(make_appointment())
        assert appointment_store.conditional_transition(
            OTHER_TENANT, "appt_1", {AppointmentStatus.CONFIRMED},
            AppointmentStatus.CANCELLED_NO_REFUND, {},
        ) is None

    def test_create_assigns_id_and_timestamps(self, appointment_store, clock):
        created = appointment_store.create(TENANT, _draft())
        assert created.id.startswith("appt_")
        assert created.tenant_id == TENANT
        assert created.created_at == clock.now

    def test_create_rejects_overlap(self, appointment_store):
        appointment_store.add(make_appointment(hours_ahead=48.5))
        with pytest.raises(SlotTaken) as exc_info:
            appointment_store.create(TENANT, _draft(hours_ahead=48))
        assert exc_info.value.conflicting_id == "appt_1"

    def test_back_to_back_is_not_overlap(self, appointment_store):
        appointment_store.add(make_appointment(hours_ahead=47))
        assert appointment_store.create(TENANT, _draft(hours_ahead=48)) is not None

    def test_other_specialist_does_not_conflict(self, appointment_store):
        appointment_store.add(make_appointment(hours_ahead=48))
        assert appointment_store.create(TENANT, _draft(specialist_id="spec_2")) is not None

    def test_other_tenant_does_not_conflict(self, appointment_store):
        appointment_store.add(make_appointment(hours_ahead=48, tenant_id=OTHER_TENANT))
        assert appointment_store.create(TENANT, _draft()) is not None

    def test_cancelled_and_no_show_do_not_conflict(self, appointment_store):
        appointment_store.add(make_appointment("a", status=AppointmentStatus.CANCELLED_NO_REFUND))
        appointment_store.add(make_appointment("b", status=AppointmentStatus.NO_SHOW))
        assert appointment_store.create(TENANT, _draft()) is not None

    def test_unpaid_hold_expires(self, appointment_store, clock):
        appointment_store.add(make_appointment(
            status=AppointmentStatus.RESERVED_UNPAID, created_ago=timedelta(minutes=1)
        ))
        window = make_appointment().time_range
        assert appointment_store.find_active_conflict(TENANT, SPECIALIST, window) is not None
        clock.advance(minutes=3)
        assert appointment_store.find_active_conflict(TENANT, SPECIALIST, window) is None

    def test_unpaid_hold_without_creation_time_does_not_block(self, appointment_store):
        legacy = make_appointment(status=AppointmentStatus.RESERVED_UNPAID)
        appointment_store.add(legacy.model_copy(update={"created_at": None}))
        window = make_appointment().time_range
        assert appointment_store.find_active_conflict(TENANT, SPECIALIST, window) is None

    def test_created_at_defaults_to_unknown(self):
        start = NOW + timedelta(hours=4)
        appt = Appointment(
            id="legacy", tenant_id=TENANT, specialist_id=SPECIALIST,
            start=start, end=start + timedelta(hours=1),
        )
        assert appt.created_at is None

    def test_find_conflict_excludes_id(self, appointment_store):
        appointment_store.add(make_appointment())
        window = make_appointment().time_range
        assert appointment_store.find_active_conflict(
            TENANT, SPECIALIST, window, exclude_id="appt_1"
        ) is None

    def test_client_conflict_without_contact(self, appointment_store):
        appointment_store.add(make_appointment())
        window = make_appointment().time_range
        assert appointment_store.find_client_conflict(TENANT, ClientContact(), window) is None

    def test_reset(self, appointment_store):
        appointment_store.add(make_appointment())
        appointment_store.reset()
        assert appointment_store.all(TENANT) == []


class TestWaitlistStore:
    def _criteria(self):
        return MatchCriteria(
            service_id="svc_lashes",
            variant_name="Classic",
            specialist_id=SPECIALIST,
            desired_date="2025-03-17",
            time_bucket=TimePreference.MORNING,
        )

    def test_candidates_sorted_and_limited(self, waitlist_store):
        waitlist_store.add(make_waitlist_entry("a", priority=0, created_ago=timedelta(days=3)))
        waitlist_store.add(make_waitlist_entry("b", priority=2, created_ago=timedelta(hours=1)))
        waitlist_store.add(make_waitlist_entry("c", priority=2, created_ago=timedelta(days=1)))

        found = waitlist_store.find_active_candidates(TENANT, self._criteria(), limit=2)

        assert [e.id for e in found] == ["c", "b"]

    def test_mark_converted_only_once(self, waitlist_store):
        waitlist_store.add(make_waitlist_entry())
        assert waitlist_store.mark_converted(TENANT, "wl_1", "appt_9")
        assert not waitlist_store.mark_converted(TENANT, "wl_1", "appt_10")
        assert waitlist_store.get(TENANT, "wl_1").converted_appointment_id == "appt_9"

    def test_mark_converted_other_tenant(self, waitlist_store):
        waitlist_store.add(make_waitlist_entry())
        assert not waitlist_store.mark_converted(OTHER_TENANT, "wl_1", "appt_9")

    def test_notes_length_limited(self):
        with pytest.raises(ValueError):
            WaitlistEntry.model_validate({**make_waitlist_entry().model_dump(), "notes": "x" * 1001})

    def test_bad_desired_date_rejected(self):
        with pytest.raises(ValueError):
            make_waitlist_entry(desired_date="17/03/2025")


class TestInMemoryGateway:
    def test_refund_recorded(self):
        gateway = InMemoryPaymentGateway()
        receipt = gateway.refund(_refund())
        assert receipt.refund_id.startswith("re_")
        assert gateway.total_refunded == 1000
        assert gateway.receipt_for("cancel:appt_1:1") == receipt

    def test_same_key_replays(self):
        gateway = InMemoryPaymentGateway()
        first = gateway.refund(_refund())
        second = gateway.refund(_refund())
        assert first.refund_id == second.refund_id
        assert len(gateway.refunds) == 1
        assert gateway.call_count == 2

    def test_same_key_different_amount_rejected(self):
        gateway = InMemoryPaymentGateway()
        gateway.refund(_refund())
        with pytest.raises(GatewayError) as exc_info:
            gateway.refund(_refund(amount=500))
        assert exc_info.value.code == "idempotency_error"

    def test_injected_failures(self):
        gateway = InMemoryPaymentGateway()
        gateway.fail_next(2)
        for _ in range(2):
            with pytest.raises(GatewayError):
                gateway.refund(_refund())
        assert gateway.refund(_refund()).amount_minor_units == 1000

    def test_non_positive_amount_rejected(self):
        with pytest.raises(GatewayError):
            InMemoryPaymentGateway().refund(_refund(amount=0))

    def test_missing_reference_rejected(self):
        with pytest.raises(GatewayError):
            InMemoryPaymentGateway().refund(_refund(payment_intent_id=None))
