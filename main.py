"""
Cancellation engine entry point.

Quotes a refund for a hypothetical booking against the configured default
policy, or runs the offline console demo.

Usage:
    Refund quote: python main.py preview --total 4500 --hours 5
    Demo:         python main.py demo [--scenario waitlist]
"""

import argparse
import logging
from datetime import timedelta

from cancellation_engine.config import settings
from cancellation_engine.engine.outcome_calculator import compute_cancellation_outcome
from cancellation_engine.engine.policy_resolver import default_policy
from cancellation_engine.money import format_minor, utc_now
from cancellation_engine.schemas.appointment_schema import (
    Appointment,
    GatewayReference,
    Payment,
    PaymentMode,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


def _run_preview(args: argparse.Namespace) -> None:
    """Print the outcome of cancelling a booking ``--hours`` before it starts."""
    now = utc_now()
    start = now + timedelta(hours=args.hours)
    appointment = Appointment(
        id="preview",
        tenant_id="preview",
        specialist_id="preview",
        start=start,
        end=start + timedelta(minutes=settings.waitlist.default_duration_minutes),
        created_at=now - timedelta(days=1),
        price=args.price,
        payment=Payment(
            mode=PaymentMode.DEPOSIT if args.deposit else PaymentMode.PAY_NOW,
            provider=args.provider,
            status=PaymentStatus.PAID,
            amount_total=args.total,
            amount_deposit=args.deposit or 0,
            gateway_fee_cents=args.fee,
            reference=GatewayReference(payment_intent_id="pi_preview"),
        ),
    )
    policy = default_policy()
    outcome = compute_cancellation_outcome(appointment, policy, now, settings.business.timezone)

    currency = settings.business.currency
    print(f"Policy:     free >= {policy.free_cancel_hours:g}h, "
          f"none < {policy.no_refund_hours:g}h, "
          f"partial {policy.partial_refund.percent:g}%")
    print(f"Base:       {format_minor(outcome.refundable_base, currency)}")
    print(f"Outcome:    {outcome.outcome_status.value} ({outcome.reason_code.value})")
    print(f"Refund:     {format_minor(outcome.refund_amount, currency)}")
    if outcome.price_cap_applied:
        print("            capped at listed price")


def _run_demo(args: argparse.Namespace) -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import ConsoleSession

    session = ConsoleSession()
    try:
        if args.scenario:
            session.run_scenario(args.scenario)
        else:
            session.run()
    finally:
        session.orchestrator.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Cancellation, refund and waitlist engine")
    sub = parser.add_subparsers(dest="command", required=True)

    preview = sub.add_parser("preview", help="Quote a refund against the default policy")
    preview.add_argument("--total", type=int, required=True, help="Amount paid, minor units")
    preview.add_argument("--hours", type=float, required=True, help="Hours until the start")
    preview.add_argument("--deposit", type=int, default=None, help="Deposit paid, minor units")
    preview.add_argument("--fee", type=int, default=None, help="Non-refundable gateway fee")
    preview.add_argument("--price", type=float, default=None, help="Listed price, major units")
    preview.add_argument("--provider", default="stripe", help="cash or a gateway name")
    preview.set_defaults(func=_run_preview)

    demo = sub.add_parser("demo", help="Run the offline console demo")
    demo.add_argument("--scenario", default=None, help="Run a single scenario")
    demo.set_defaults(func=_run_demo)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
