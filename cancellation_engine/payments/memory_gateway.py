"""
In-memory payment gateway.

Behaves like a real gateway with respect to idempotency: a repeated
idempotency key returns the original receipt and moves no money, and a
repeated key with a different amount is rejected.
"""

import logging
import threading
import uuid
from typing import Optional

from cancellation_engine.errors import GatewayError
from cancellation_engine.schemas.outcome_schema import RefundReceipt, RefundRequest

logger = logging.getLogger(__name__)


class InMemoryPaymentGateway:
    """Records refunds and collapses retries that share an idempotency key."""

    def __init__(self) -> None:
        self._by_key: dict[str, tuple[RefundRequest, RefundReceipt]] = {}
        self._lock = threading.Lock()
        self._failures_remaining = 0
        self._failure_message = "gateway unavailable"
        self.call_count = 0

    def fail_next(self, times: int = 1, message: str = "gateway unavailable") -> None:
        """Make the next ``times`` refund calls fail before reaching the ledger."""
        self._failures_remaining = times
        self._failure_message = message

    @property
    def refunds(self) -> list[RefundReceipt]:
        """Refunds that actually moved money, one per idempotency key."""
        return [receipt for _, receipt in self._by_key.values()]

    @property
    def total_refunded(self) -> int:
        return sum(r.amount_minor_units for r in self.refunds)

    def refund(self, request: RefundRequest) -> RefundReceipt:
        with self._lock:
            self.call_count += 1
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                raise GatewayError(self._failure_message, code="api_connection_error")

            if request.amount_minor_units <= 0:
                raise GatewayError("Refund amount must be positive", code="amount_too_small")
            if not request.reference.has_reference():
                raise GatewayError("No gateway reference for refund", code="missing_reference")

            existing = self._by_key.get(request.idempotency_key)
            if existing is not None:
                original, receipt = existing
                if original.amount_minor_units != request.amount_minor_units:
                    raise GatewayError(
                        "Idempotency key reused with different parameters",
                        code="idempotency_error",
                    )
                logger.info("Replayed refund %s for key %s", receipt.refund_id, request.idempotency_key)
                return receipt

            receipt = RefundReceipt(
                refund_id=f"re_{uuid.uuid4().hex[:14]}",
                amount_minor_units=request.amount_minor_units,
                idempotency_key=request.idempotency_key,
            )
            self._by_key[request.idempotency_key] = (request, receipt)
        logger.info("Refund created: %s amount=%d", receipt.refund_id, receipt.amount_minor_units)
        return receipt

    def receipt_for(self, idempotency_key: str) -> Optional[RefundReceipt]:
        existing = self._by_key.get(idempotency_key)
        return existing[1] if existing else None
