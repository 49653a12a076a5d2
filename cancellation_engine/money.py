"""
Money and time primitives.

All amounts are integer minor currency units (pence, cents). Major-unit
values only enter through legacy ``price`` fields and are converted once,
here. Durations are plain elapsed time, never calendar-aware.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union
from zoneinfo import ZoneInfo

Number = Union[int, float, Decimal]

SECONDS_PER_HOUR = 3600


def to_minor_units(amount_major: Optional[Number]) -> int:
    """Convert a major-unit amount (e.g. 12.50) to minor units (1250), half-up."""
    if amount_major is None:
        return 0
    return int(Decimal(str(amount_major)).scaleb(2).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount_minor: int, percent: Number) -> int:
    """Return ``amount_minor * percent / 100`` rounded half-up to a whole minor unit.

    Examples:
        >>> percent_of(10000, 25)
        2500
        >>> percent_of(9901, 25)
        2475
        >>> percent_of(5, 50)
        3
    """
    value = Decimal(int(amount_minor)) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_non_negative(amount_minor: int) -> int:
    return max(0, int(amount_minor))


def ensure_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to already be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from ``start`` to ``end`` (negative when end is earlier)."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_HOUR


def hours_until(start: datetime, now: datetime) -> float:
    """Hours remaining from ``now`` until ``start``."""
    return hours_between(now, start)


def epoch_millis(moment: datetime) -> int:
    return int(ensure_utc(moment).timestamp() * 1000)


def local_hour(moment: datetime, tz_name: str) -> int:
    """Hour of day of ``moment`` in the business timezone."""
    return ensure_utc(moment).astimezone(ZoneInfo(tz_name)).hour


def local_date(moment: datetime, tz_name: str) -> date:
    """Calendar date of ``moment`` in the business timezone."""
    return ensure_utc(moment).astimezone(ZoneInfo(tz_name)).date()


def format_minor(amount_minor: int, currency: str = "GBP") -> str:
    """Render minor units for logs and notifications, e.g. ``GBP 24.75``."""
    sign = "-" if amount_minor < 0 else ""
    whole, frac = divmod(abs(int(amount_minor)), 100)
    return f"{currency} {sign}{whole}.{frac:02d}"
