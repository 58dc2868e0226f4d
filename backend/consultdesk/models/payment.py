"""
Payment transaction model.

One row per gateway order. The row is created PENDING together with the
gateway order and afterwards only moves through the reconciler's guarded
transitions: PENDING -> COMPLETED | FAILED, COMPLETED -> REFUNDED.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON
import ulid

from ..core.enums import TransactionStatus, TransactionType
from ..database import Base


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("sessions.id"), nullable=True, index=True
    )
    quotation_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("quotations.id"), nullable=True, index=True
    )
    consultant_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("consultants.id"), nullable=False, index=True
    )
    client_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("clients.id"), nullable=True, index=True
    )
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionType.PAYMENT.value
    )

    gateway_order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_response: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (session_id IS NOT NULL AND quotation_id IS NOT NULL)",
            name="ck_payment_transactions_single_target",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED')",
            name="ck_payment_transactions_status",
        ),
        CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction {self.id}: order={self.gateway_order_id} "
            f"status={self.status} amount={self.amount}>"
        )
