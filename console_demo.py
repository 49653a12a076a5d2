"""
Offline console demo: runs cancellation and waitlist scenarios without any API keys.

Uses the real calculator, policy resolver, refund orchestrator and waitlist
matcher on top of the in-memory stores and payment gateway. No database,
no Stripe, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario partial
    python console_demo.py --scenario waitlist
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone

from cancellation_engine.config import settings
from cancellation_engine.engine.refund_orchestrator import RefundOrchestrator
from cancellation_engine.engine.waitlist_matcher import WaitlistMatcher
from cancellation_engine.errors import GatewayError
from cancellation_engine.money import format_minor
from cancellation_engine.notifications import LoggingNotificationDispatcher
from cancellation_engine.payments.memory_gateway import InMemoryPaymentGateway
from cancellation_engine.schemas.appointment_schema import (
    Actor,
    Appointment,
    AppointmentStatus,
    ClientContact,
    GatewayReference,
    Payment,
    PaymentMode,
    PaymentStatus,
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

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

TENANT = "salon_demo"
SPECIALIST = "spec_amelia"


class ConsoleSession:
    """Wires the engine to in-memory collaborators and narrates each step."""

    SCENARIOS = ("full", "partial", "late", "unpaid", "gateway", "race", "waitlist")

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc).replace(microsecond=0)
        self.appointments = InMemoryAppointmentStore(clock=lambda: self.now)
        self.policies = InMemoryPolicyStore()
        self.waitlist = InMemoryWaitlistStore(clock=lambda: self.now)
        self.gateway = InMemoryPaymentGateway()
        self.notifier = LoggingNotificationDispatcher()
        self.matcher = WaitlistMatcher(
            self.appointments, self.waitlist, self.notifier, clock=lambda: self.now
        )
        self.orchestrator = RefundOrchestrator(
            self.appointments,
            self.policies,
            gateway=self.gateway,
            notifier=self.notifier,
            waitlist_matcher=self.matcher,
            clock=lambda: self.now,
        )
        self.policies.save_policy(
            TENANT,
            CancellationPolicy(
                scope=PolicyScope.SALON,
                free_cancel_hours=48,
                no_refund_hours=2,
                partial_refund=PartialRefund(percent=25),
            ),
        )

    def say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[engine]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def heading(self, text: str) -> None:
        print(f"\n{BLUE}{BOLD}== {text} =={RESET}")

    def _book(
        self,
        appointment_id: str,
        hours_ahead: float,
        total: int = 10000,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        provider: str = "stripe",
    ) -> Appointment:
        start = self.now + timedelta(hours=hours_ahead)
        appt = Appointment(
            id=appointment_id,
            tenant_id=TENANT,
            specialist_id=SPECIALIST,
            start=start,
            end=start + timedelta(hours=1),
            created_at=self.now - timedelta(days=3),
            service_id="svc_lashes",
            variant_name="Classic Full Set",
            price=total / 100,
            client=ClientContact(name="Jane Doe", email="jane@example.com", phone="07700 900123"),
            payment=Payment(
                mode=PaymentMode.PAY_NOW,
                provider=provider,
                status=PaymentStatus.PAID,
                amount_total=total,
                gateway_fee_cents=99 if provider == "stripe" else None,
                reference=GatewayReference(payment_intent_id=f"pi_{appointment_id}"),
            ),
            status=status,
        )
        self.appointments.add(appt)
        self.system_log(
            f"Booked {appt.id}: starts in {hours_ahead:g}h, paid {format_minor(total, settings.business.currency)}"
        )
        return appt

    def _cancel(self, appointment_id: str, refill: bool = False) -> None:
        preview = self.orchestrator.preview(TENANT, appointment_id)
        self.system_log(
            f"Preview: {preview.status.value} refund {format_minor(preview.refund_amount)}"
        )
        try:
            result = self.orchestrator.cancel(
                TENANT, appointment_id, Actor.CUSTOMER, reason="Change of plans", refill_slot=refill
            )
        except GatewayError as e:
            print(f"{RED}{BOLD}[engine]{RESET} {RED}Refund failed, nothing changed: {e}{RESET}")
            current = self.appointments.get(TENANT, appointment_id)
            self.system_log(f"Appointment status still {current.status.value}")
            return
        self.say(
            f"{result.appointment_id}: {result.status.value}, refund {format_minor(result.refund_amount)}"
            + (f" ({result.gateway_refund_id})" if result.gateway_refund_id else "")
        )
        self.system_log(f"States: {' -> '.join(result.state_trace)}")
        if result.already_cancelled or result.already_processed:
            self.system_log("Returned the previously committed outcome")
        if result.waitlist_match is not None:
            match = result.waitlist_match
            colour = GREEN if match.filled else YELLOW
            print(f"{colour}  waitlist: {match.reason.value} {match.appointment_id or ''}{RESET}")

    def run_scenario(self, scenario: str) -> None:
        if scenario == "full":
            self.heading("Cancel three days out (free window)")
            self._book("appt_full", hours_ahead=72)
            self._cancel("appt_full")
        elif scenario == "partial":
            self.heading("Cancel three hours out (25% partial window)")
            self._book("appt_partial", hours_ahead=3)
            self._cancel("appt_partial")
        elif scenario == "late":
            self.heading("Cancel one hour out (no-refund window)")
            self._book("appt_late", hours_ahead=1)
            self._cancel("appt_late")
        elif scenario == "unpaid":
            self.heading("Cancel an unpaid hold")
            self._book("appt_hold", hours_ahead=72, status=AppointmentStatus.RESERVED_UNPAID)
            self._cancel("appt_hold")
        elif scenario == "gateway":
            self.heading("Gateway outage, then retry")
            self._book("appt_retry", hours_ahead=72)
            self.gateway.fail_next(1)
            self._cancel("appt_retry")
            self._cancel("appt_retry")
            self._cancel("appt_retry")
            self.system_log(f"Gateway refunds recorded: {len(self.gateway.refunds)}")
        elif scenario == "race":
            self.heading("Duplicate cancellation requests")
            self._book("appt_dupe", hours_ahead=72)
            self._cancel("appt_dupe")
            self._cancel("appt_dupe")
            self.system_log(f"Gateway refunds recorded: {len(self.gateway.refunds)}")
        elif scenario == "waitlist":
            self.heading("Cancellation refills the slot from the waitlist")
            self._book("appt_freed", hours_ahead=72)
            for entry_id, name, priority in [
                ("wl_1", "Sam Lee", 0),
                ("wl_2", "Priya Shah", 5),
            ]:
                self.waitlist.add(WaitlistEntry(
                    id=entry_id,
                    tenant_id=TENANT,
                    service_id="svc_lashes",
                    variant_name="Classic Full Set",
                    time_preference=TimePreference.ANY,
                    client=ClientContact(name=name, email=f"{entry_id}@example.com"),
                    priority=priority,
                    created_at=self.now - timedelta(days=1),
                ))
                self.system_log(f"Waitlisted {name} (priority {priority})")
            self._cancel("appt_freed", refill=True)
            for note in self.notifier.sent:
                self.system_log(f"notify {note.channel}/{note.template_kind} -> {note.payload.get('to')}")
        else:
            raise ValueError(f"Unknown scenario: {scenario}")

    def run(self) -> None:
        print(f"{BOLD}Cancellation engine demo ({settings.business.timezone}){RESET}")
        for scenario in self.SCENARIOS:
            self.run_scenario(scenario)


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline cancellation engine demo")
    parser.add_argument(
        "--scenario",
        choices=ConsoleSession.SCENARIOS,
        help="Run a single scenario instead of all of them",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    try:
        if args.scenario:
            session.run_scenario(args.scenario)
        else:
            session.run()
    except KeyboardInterrupt:
        print(f"\n{DIM}Interrupted{RESET}")
        sys.exit(130)
    finally:
        session.orchestrator.close()


if __name__ == "__main__":
    main()
