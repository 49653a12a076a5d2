"""Cancellation policy data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class PolicyScope(str, Enum):
    SALON = "salon"
    SPECIALIST = "specialist"


class PolicySource(str, Enum):
    """Where a resolved policy came from."""
    SPECIALIST = "specialist"
    SALON = "salon"
    DEFAULT = "default"


class AppliesTo(str, Enum):
    AUTO = "auto"
    DEPOSIT_ONLY = "deposit_only"
    FULL = "full"


class PartialRefund(BaseModel):
    """Refund rule for the partial window: a percentage or a fixed minor-unit amount."""
    percent: Optional[float] = Field(default=None, ge=0, le=100)
    fixed: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _exactly_one_rule(self) -> "PartialRefund":
        if self.percent is not None and self.fixed is not None:
            raise ValueError("partial_refund takes either percent or fixed, not both")
        if self.percent is None and self.fixed is None:
            raise ValueError("partial_refund needs a percent or a fixed amount")
        return self


class CancellationPolicy(BaseModel):
    """Time-windowed cancellation policy configured by business administrators."""
    scope: PolicyScope = PolicyScope.SALON
    specialist_id: Optional[str] = None
    free_cancel_hours: float = Field(default=24, ge=0)
    no_refund_hours: float = Field(default=2, ge=0)
    reschedule_allowed_hours: float = Field(default=2, ge=0)
    partial_refund: PartialRefund = Field(default_factory=lambda: PartialRefund(percent=50))
    grace_minutes: int = Field(default=15, ge=0)
    applies_to: AppliesTo = AppliesTo.AUTO
    currency: str = "GBP"

    @model_validator(mode="after")
    def _check_windows(self) -> "CancellationPolicy":
        if self.no_refund_hours > self.free_cancel_hours:
            raise ValueError(
                "No refund window cannot be larger than free cancellation window"
            )
        if self.scope == PolicyScope.SPECIALIST and not self.specialist_id:
            raise ValueError("specialist-scoped policy requires specialist_id")
        return self


class ResolvedPolicy(BaseModel):
    """A policy together with the scope it was resolved from."""
    policy: CancellationPolicy
    source: PolicySource

    def snapshot(self) -> dict:
        """Immutable copy stored on the appointment for dispute resolution."""
        data = self.policy.model_dump(mode="json")
        data["source"] = self.source.value
        return data
