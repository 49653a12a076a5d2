"""Cancellation, refund and waitlist reallocation engine for multi-tenant appointment booking."""

__version__ = "0.1.0"
