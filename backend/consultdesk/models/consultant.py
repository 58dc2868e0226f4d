"""
Consultant model.

A consultant owns clients, sessions, quotations and availability slots, and
holds the OAuth credentials used to provision meetings on their behalf.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import SessionType
from ..database import Base


class Consultant(Base):
    __tablename__ = "consultants"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    slug = Column(String(120), nullable=False, unique=True, index=True)

    personal_session_price = Column(Numeric(10, 2), nullable=True)
    webinar_session_price = Column(Numeric(10, 2), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    is_approved_by_admin = Column(Boolean, nullable=False, default=False)

    # Microsoft Teams (Graph) delegated credentials
    teams_access_token = Column(Text, nullable=True)
    teams_refresh_token = Column(Text, nullable=True)
    teams_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    teams_user_email = Column(String(255), nullable=True)

    # Google Calendar credentials for Meet links
    google_access_token = Column(Text, nullable=True)
    google_refresh_token = Column(Text, nullable=True)
    google_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    clients = relationship("Client", back_populates="consultant")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_bookable(self) -> bool:
        """Public bookings need an active, verified, admin-approved consultant."""
        return bool(self.is_active and self.is_email_verified and self.is_approved_by_admin)

    def price_for(self, session_type: str) -> Decimal:
        """Configured price for a session type (0 when unset)."""
        if session_type == SessionType.WEBINAR.value:
            price: Optional[Decimal] = self.webinar_session_price
        else:
            price = self.personal_session_price
        return Decimal(price) if price is not None else Decimal("0")

    def __repr__(self) -> str:
        return f"<Consultant {self.id}: slug={self.slug}>"
