"""Quotation model: a priced proposal a client can pay to accept."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..core.enums import QuotationStatus
from ..database import Base


class Quotation(Base):
    __tablename__ = "quotations"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    consultant_id = Column(String(26), ForeignKey("consultants.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=True)
    client_email = Column(String(255), nullable=False)
    client_name = Column(String(200), nullable=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    final_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=QuotationStatus.DRAFT.value)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Quotation {self.id}: status={self.status} amount={self.final_amount}>"
