"""
Consultation session model.

A session is the unit a client books with a consultant. Its scheduling slot is
a local ``scheduled_date`` plus an "HH:MM" ``scheduled_time`` in the session's
timezone; both are nullable for unscheduled ("manual") bookings.

Slot exclusivity: a partial unique index keeps at most one non-cancelled
session on any (consultant, date, time). The booking service checks for a
conflict first, and the index rejects whichever insert loses a race.
"""

from datetime import date, datetime
import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import (
    CANCELLABLE_SESSION_STATUSES,
    SessionPaymentStatus,
    SessionStatus,
)
from ..core.timezone_utils import session_start_utc
from ..database import Base

logger = logging.getLogger(__name__)

ACTIVE_SLOT_INDEX_NAME = "uq_sessions_active_slot"
_ACTIVE_SLOT_PREDICATE = text("status <> 'CANCELLED'")


class ConsultationSession(Base):
    __tablename__ = "sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    consultant_id = Column(String(26), ForeignKey("consultants.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)

    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    session_type = Column(String(20), nullable=False)

    status = Column(String(20), nullable=False, default=SessionStatus.PENDING.value, index=True)
    payment_status = Column(
        String(20), nullable=False, default=SessionPaymentStatus.PENDING.value, index=True
    )

    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(String(5), nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    timezone = Column(String(64), nullable=False, default="Asia/Kolkata")

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    payment_method = Column(String(20), nullable=True)
    payment_id = Column(String(100), nullable=True)

    platform = Column(String(10), nullable=True)
    meeting_link = Column(Text, nullable=True)
    meeting_id = Column(String(255), nullable=True)
    meeting_password = Column(String(100), nullable=True)

    booking_source = Column(String(30), nullable=False)
    client_notes = Column(Text, nullable=True)
    consultant_notes = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    reminder_sent = Column(Boolean, nullable=False, default=False)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    consultant = relationship("Consultant")
    client = relationship("Client")

    __table_args__ = (
        Index(
            ACTIVE_SLOT_INDEX_NAME,
            "consultant_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index("ix_sessions_status_scheduled_date", "status", "scheduled_date"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', "
            "'RETURNED', 'ABANDONED', 'NO_SHOW')",
            name="ck_sessions_status",
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED', 'FAILED')",
            name="ck_sessions_payment_status",
        ),
        CheckConstraint("duration_minutes > 0", name="ck_sessions_duration_positive"),
        CheckConstraint("amount >= 0", name="ck_sessions_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConsultationSession {self.id}: consultant={self.consultant_id}, "
            f"date={self.scheduled_date}, time={self.scheduled_time}, status={self.status}>"
        )

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_date is not None and bool(self.scheduled_time)

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_SESSION_STATUSES

    @property
    def needs_meeting_link(self) -> bool:
        """Scheduled but meeting provisioning was deferred."""
        return self.is_scheduled and not self.meeting_link

    @property
    def starts_at(self) -> Optional[datetime]:
        """Aware UTC start time, or None for unscheduled sessions."""
        if not self.is_scheduled:
            return None
        scheduled_date: date = self.scheduled_date
        return session_start_utc(scheduled_date, self.scheduled_time, self.timezone)
