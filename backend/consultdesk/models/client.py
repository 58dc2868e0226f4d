"""
Client model.

Clients are scoped to a consultant: the same email address booking two
different consultants yields two Client rows. The running counters
``total_sessions`` and ``total_amount_paid`` form the client ledger and are
only changed through ClientRepository's atomic increment helpers.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    consultant_id = Column(String(26), ForeignKey("consultants.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    total_sessions = Column(Integer, nullable=False, default=0)
    total_amount_paid = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    consultant = relationship("Consultant", back_populates="clients")

    __table_args__ = (
        UniqueConstraint("consultant_id", "email", name="uq_clients_consultant_email"),
        CheckConstraint("total_sessions >= 0", name="ck_clients_total_sessions_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Client {self.id}: consultant={self.consultant_id} email={self.email}>"
