"""Waitlist entry data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from cancellation_engine.schemas.appointment_schema import AuditEntry, ClientContact


class TimePreference(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    ANY = "any"


class WaitlistStatus(str, Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    EXPIRED = "expired"
    REMOVED = "removed"


class WaitlistSource(str, Enum):
    PUBLIC_BOOKING = "public_booking"
    ADMIN_MANUAL = "admin_manual"
    SYSTEM = "system"


class WaitlistEntry(BaseModel):
    """A customer waiting for a slot to free up."""
    id: str
    tenant_id: str
    service_id: str
    variant_name: str
    specialist_id: Optional[str] = None
    desired_date: Optional[str] = Field(default=None, pattern=r"^(\d{4}-\d{2}-\d{2})?$")
    time_preference: TimePreference = TimePreference.ANY
    client: ClientContact
    priority: int = 0
    status: WaitlistStatus = WaitlistStatus.ACTIVE
    source: WaitlistSource = WaitlistSource.PUBLIC_BOOKING
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notified_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    converted_appointment_id: Optional[str] = None
    audit: list[AuditEntry] = Field(default_factory=list)

    @field_validator("variant_name")
    @classmethod
    def _strip_variant(cls, value: str) -> str:
        return value.strip()


class MatchCriteria(BaseModel):
    """What a freed slot offers, used to query for waitlist candidates."""
    service_id: str
    variant_name: str
    specialist_id: str
    desired_date: str
    time_bucket: TimePreference

    def accepts(self, entry: WaitlistEntry) -> bool:
        """Whether an active entry is compatible with this slot."""
        return (
            entry.status == WaitlistStatus.ACTIVE
            and entry.service_id == self.service_id
            and entry.variant_name == self.variant_name
            and (not entry.specialist_id or entry.specialist_id == self.specialist_id)
            and (not entry.desired_date or entry.desired_date == self.desired_date)
            and entry.time_preference in (self.time_bucket, TimePreference.ANY)
        )
