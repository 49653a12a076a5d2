"""
Centralized configuration with environment variable overrides.

Default cancellation policy, waitlist matching limits, payment gateway
settings and the business timezone all live here. Nothing is hardcoded
in engine or store logic.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class BusinessConfig:
    """Business-wide display settings."""

    timezone: str = os.getenv("SALON_TZ", "Europe/London")
    currency: str = os.getenv("CURRENCY", "GBP")


@dataclass(frozen=True)
class PolicyDefaultsConfig:
    """Built-in cancellation policy used when no policy is stored."""

    free_cancel_hours: float = _safe_float("DEFAULT_FREE_CANCEL_HOURS", "24")
    no_refund_hours: float = _safe_float("DEFAULT_NO_REFUND_HOURS", "2")
    partial_refund_percent: float = _safe_float("DEFAULT_PARTIAL_REFUND_PERCENT", "50")
    grace_minutes: int = _safe_int("DEFAULT_GRACE_MINUTES", "15")
    reschedule_allowed_hours: float = _safe_float("DEFAULT_RESCHEDULE_ALLOWED_HOURS", "2")
    applies_to: str = os.getenv("DEFAULT_POLICY_APPLIES_TO", "deposit_only")


@dataclass(frozen=True)
class WaitlistConfig:
    """Waitlist auto-fill limits."""

    candidate_limit: int = _safe_int("WAITLIST_CANDIDATE_LIMIT", "25")
    unpaid_hold_minutes: int = _safe_int("UNPAID_HOLD_MINUTES", "3")
    default_duration_minutes: int = _safe_int("DEFAULT_APPOINTMENT_MINUTES", "60")


@dataclass(frozen=True)
class GatewayConfig:
    """Stripe refund gateway settings."""

    stripe_secret_key: Optional[str] = os.getenv("STRIPE_SECRET_KEY") or None
    max_network_retries: int = _safe_int("STRIPE_MAX_NETWORK_RETRIES", "1")
    timeout_seconds: float = _safe_float("STRIPE_TIMEOUT_SECONDS", "8.0")
    refund_application_fee: bool = _safe_bool("STRIPE_REFUND_APPLICATION_FEE", "true")
    reverse_transfer: bool = _safe_bool("STRIPE_REVERSE_TRANSFER", "true")
    settle_timeout_seconds: float = _safe_float("CANCEL_SETTLE_TIMEOUT_SECONDS", "2.0")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    policy_defaults: PolicyDefaultsConfig = field(default_factory=PolicyDefaultsConfig)
    waitlist: WaitlistConfig = field(default_factory=WaitlistConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "cancellation-engine")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    try:
        ZoneInfo(config.business.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"SALON_TZ is not a known timezone: {config.business.timezone!r}"
        ) from None

    defaults = config.policy_defaults
    if defaults.free_cancel_hours < 0 or defaults.no_refund_hours < 0:
        raise ValueError(
            "DEFAULT_FREE_CANCEL_HOURS and DEFAULT_NO_REFUND_HOURS must be >= 0, "
            f"got {defaults.free_cancel_hours} and {defaults.no_refund_hours}"
        )
    if defaults.no_refund_hours > defaults.free_cancel_hours:
        raise ValueError(
            "DEFAULT_NO_REFUND_HOURS must not exceed DEFAULT_FREE_CANCEL_HOURS, "
            f"got {defaults.no_refund_hours} > {defaults.free_cancel_hours}"
        )
    if not 0.0 <= defaults.partial_refund_percent <= 100.0:
        raise ValueError(
            "DEFAULT_PARTIAL_REFUND_PERCENT must be between 0 and 100, "
            f"got {defaults.partial_refund_percent}"
        )
    if defaults.grace_minutes < 0:
        raise ValueError(
            f"DEFAULT_GRACE_MINUTES must be >= 0, got {defaults.grace_minutes}"
        )

    if config.waitlist.candidate_limit < 1:
        raise ValueError(
            f"WAITLIST_CANDIDATE_LIMIT must be >= 1, got {config.waitlist.candidate_limit}"
        )
    if config.waitlist.unpaid_hold_minutes < 0:
        raise ValueError(
            f"UNPAID_HOLD_MINUTES must be >= 0, got {config.waitlist.unpaid_hold_minutes}"
        )
    if config.waitlist.default_duration_minutes < 1:
        raise ValueError(
            "DEFAULT_APPOINTMENT_MINUTES must be >= 1, "
            f"got {config.waitlist.default_duration_minutes}"
        )

    if config.gateway.max_network_retries < 0:
        raise ValueError(
            "STRIPE_MAX_NETWORK_RETRIES must be >= 0, "
            f"got {config.gateway.max_network_retries}"
        )
    if config.gateway.timeout_seconds <= 0:
        raise ValueError(
            f"STRIPE_TIMEOUT_SECONDS must be > 0, got {config.gateway.timeout_seconds}"
        )
    if config.gateway.settle_timeout_seconds < 0:
        raise ValueError(
            "CANCEL_SETTLE_TIMEOUT_SECONDS must be >= 0, "
            f"got {config.gateway.settle_timeout_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info(
        "Configuration loaded for '%s' (tz=%s)",
        config.service_name, config.business.timezone,
    )
    return config


# Singleton instance
settings = load_config()
