"""
Stripe refund gateway.

One ``StripeClient`` per connected account, created lazily by a factory
that the refund orchestrator owns for its lifetime. There is no
module-level client or global ``stripe.api_key``.
"""

import logging
import threading
from typing import Any, Optional

import stripe

from cancellation_engine.config import settings
from cancellation_engine.errors import GatewayError
from cancellation_engine.schemas.outcome_schema import RefundReceipt, RefundRequest

logger = logging.getLogger(__name__)

PLATFORM_ACCOUNT = "platform"


class StripeClientFactory:
    """Builds and caches Stripe clients keyed by connected account id."""

    def __init__(
        self,
        api_key: Optional[str] = settings.gateway.stripe_secret_key,
        max_network_retries: int = settings.gateway.max_network_retries,
        timeout_seconds: float = settings.gateway.timeout_seconds,
    ) -> None:
        if not api_key:
            raise GatewayError("Stripe secret key not configured", code="not_configured")
        self._api_key = api_key
        self._max_network_retries = max_network_retries
        self._timeout_seconds = timeout_seconds
        self._clients: dict[str, stripe.StripeClient] = {}
        self._http_clients: list[Any] = []
        self._lock = threading.Lock()

    def client_for(self, connected_account_id: Optional[str] = None) -> stripe.StripeClient:
        key = connected_account_id or PLATFORM_ACCOUNT
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                http_client = stripe.RequestsClient(timeout=self._timeout_seconds)
                client = stripe.StripeClient(
                    self._api_key,
                    stripe_account=connected_account_id,
                    max_network_retries=self._max_network_retries,
                    http_client=http_client,
                )
                self._clients[key] = client
                self._http_clients.append(http_client)
                logger.debug("Stripe client created for account %s", key)
            return client

    def close(self) -> None:
        """Drop cached clients and close their HTTP sessions."""
        with self._lock:
            for http_client in self._http_clients:
                try:
                    http_client.close()
                except Exception:
                    logger.warning("Failed closing Stripe HTTP client", exc_info=True)
            self._http_clients.clear()
            self._clients.clear()


class StripeRefundGateway:
    """PaymentGateway backed by Stripe refunds."""

    def __init__(
        self,
        client_factory: StripeClientFactory,
        refund_application_fee: bool = settings.gateway.refund_application_fee,
        reverse_transfer: bool = settings.gateway.reverse_transfer,
    ) -> None:
        self._factory = client_factory
        self._refund_application_fee = refund_application_fee
        self._reverse_transfer = reverse_transfer

    def _build_params(self, request: RefundRequest) -> dict[str, Any]:
        params: dict[str, Any] = {"amount": request.amount_minor_units}
        reference = request.reference
        if reference.payment_intent_id:
            params["payment_intent"] = reference.payment_intent_id
        elif reference.charge_id:
            params["charge"] = reference.charge_id
        else:
            raise GatewayError("No Stripe reference for refund", code="missing_reference")

        if self._refund_application_fee:
            params["refund_application_fee"] = True
        # reverse_transfer only exists for destination charges made on the platform
        if self._reverse_transfer and request.connected_account_id is None:
            params["reverse_transfer"] = True
        return params

    def refund(self, request: RefundRequest) -> RefundReceipt:
        params = self._build_params(request)
        client = self._factory.client_for(request.connected_account_id)
        try:
            refund = client.v1.refunds.create(
                params=params,
                options={"idempotency_key": request.idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe refund failed (key=%s): %s", request.idempotency_key, e.user_message or str(e)
            )
            code = e.code or ("idempotency_error" if isinstance(e, stripe.IdempotencyError) else None)
            raise GatewayError(f"Refund failed: {e.user_message or str(e)}", code=code) from e

        logger.info(
            "[REFUND] Created %s amount=%d account=%s",
            refund.id, request.amount_minor_units,
            request.connected_account_id or PLATFORM_ACCOUNT,
        )
        return RefundReceipt(
            refund_id=refund.id,
            amount_minor_units=int(refund.amount),
            status=str(refund.status or "pending"),
            idempotency_key=request.idempotency_key,
        )
