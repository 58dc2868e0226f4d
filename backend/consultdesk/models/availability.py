"""
Availability slot model.

Consultants publish bookable slots; a public booking for a specific time must
claim an open slot, and cancelling the session releases it.
"""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class AvailabilitySlot(Base):
    __tablename__ = "availability_slots"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    consultant_id = Column(String(26), ForeignKey("consultants.id"), nullable=False)
    session_type = Column(String(20), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    is_blocked = Column(Boolean, nullable=False, default=False)
    session_id = Column(String(26), ForeignKey("sessions.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_availability_slots_lookup", "consultant_id", "date", "start_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot {self.id}: consultant={self.consultant_id} "
            f"{self.date} {self.start_time}-{self.end_time} booked={self.is_booked}>"
        )
