# backend/consultdesk/schemas/booking.py
"""
Booking and session schemas.

Sessions carry their own local ``scheduled_date`` and "HH:MM"
``scheduled_time``. Both are optional, and always given together, so unscheduled
("manual") sessions can be recorded.
"""

from datetime import date, datetime
from decimal import Decimal
import re
from typing import Optional

from pydantic import ConfigDict, EmailStr, Field, field_validator, model_validator

from ..core.enums import MeetingPlatform, PaymentMethod, SessionType
from ._strict_base import StrictModel, StrictRequestModel

HHMM_REGEX = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _validate_hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    candidate = value.strip()
    if not HHMM_REGEX.fullmatch(candidate):
        raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return candidate


class PublicBookingRequest(StrictRequestModel):
    """Booking submitted from a consultant's public booking page."""

    consultant_slug: str = Field(..., min_length=1, max_length=120)
    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone_number: Optional[str] = Field(None, max_length=20)
    session_type: SessionType
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    duration_minutes: int = Field(60, ge=15, le=480)
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    platform: MeetingPlatform = MeetingPlatform.MEET
    client_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("scheduled_time")
    @classmethod
    def _check_time(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hhmm(v)

    @model_validator(mode="after")
    def _date_and_time_together(self) -> "PublicBookingRequest":
        if (self.scheduled_date is None) != (self.scheduled_time is None):
            raise ValueError("scheduled_date and scheduled_time must be provided together")
        return self

    @field_validator("full_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        stripped = " ".join(v.split())
        if not stripped:
            raise ValueError("full_name must not be blank")
        return stripped


class SessionCreate(StrictRequestModel):
    """Session created by a consultant for one of their clients."""

    client_id: str
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    session_type: SessionType = SessionType.PERSONAL
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    duration_minutes: int = Field(60, ge=15, le=480)
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    platform: MeetingPlatform = MeetingPlatform.MEET
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    notes: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def _check_time(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hhmm(v)

    @model_validator(mode="after")
    def _date_and_time_together(self) -> "SessionCreate":
        if (self.scheduled_date is None) != (self.scheduled_time is None):
            raise ValueError("scheduled_date and scheduled_time must be provided together")
        return self


class SessionUpdate(StrictRequestModel):
    """Reschedule / edit a PENDING or CONFIRMED session."""

    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, ge=15, le=480)
    platform: Optional[MeetingPlatform] = None
    notes: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def _check_time(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hhmm(v)


class ClientSummary(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    name: str
    email: str
    total_sessions: int
    total_amount_paid: Decimal


class SessionResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    consultant_id: str
    client_id: str
    title: str
    session_type: str
    status: str
    payment_status: str
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    duration_minutes: int
    timezone: str
    amount: Decimal
    currency: str
    payment_method: Optional[str] = None
    platform: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None
    meeting_password: Optional[str] = None
    booking_source: str
    cancelled_at: Optional[datetime] = None


class BookingResponse(StrictModel):
    client: ClientSummary
    session: SessionResponse
    meeting_deferred: bool = False
