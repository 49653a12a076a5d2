from cancellation_engine.payments.memory_gateway import InMemoryPaymentGateway
from cancellation_engine.payments.stripe_gateway import StripeClientFactory, StripeRefundGateway

__all__ = ["InMemoryPaymentGateway", "StripeClientFactory", "StripeRefundGateway"]
