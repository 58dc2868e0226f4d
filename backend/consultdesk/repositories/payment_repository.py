"""
Payment Repository.

Data access for payment transactions. Every status change here is a guarded
update keyed on the expected current status:

- PENDING -> COMPLETED (verification or captured webhook)
- PENDING -> FAILED (failure report or failed webhook)
- COMPLETED -> REFUNDED (refund)

Callers read the affected row count to tell the winner of a race from the
no-op duplicates.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.enums import TransactionStatus, TransactionType
from ..models.payment import PaymentTransaction
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentTransaction]):
    """Repository for payment transaction data access."""

    def __init__(self, db: Session):
        super().__init__(db, PaymentTransaction)

    # ========== Lookups ==========

    def get_by_order_id(self, gateway_order_id: str) -> Optional[PaymentTransaction]:
        return self.find_one_by(gateway_order_id=gateway_order_id)

    def get_pending_by_order_id(self, gateway_order_id: str) -> Optional[PaymentTransaction]:
        return self.find_one_by(
            gateway_order_id=gateway_order_id, status=TransactionStatus.PENDING.value
        )

    def get_completed_by_payment_id(self, gateway_payment_id: str) -> Optional[PaymentTransaction]:
        return self.find_one_by(
            gateway_payment_id=gateway_payment_id,
            status=TransactionStatus.COMPLETED.value,
        )

    def get_by_payment_id(self, gateway_payment_id: str) -> Optional[PaymentTransaction]:
        return self.find_one_by(gateway_payment_id=gateway_payment_id)

    def find_open_for_target(
        self, *, session_id: Optional[str] = None, quotation_id: Optional[str] = None
    ) -> Optional[PaymentTransaction]:
        """Latest PENDING or COMPLETED gateway payment raised for a session or quotation."""
        if session_id:
            target = PaymentTransaction.session_id == session_id
        elif quotation_id:
            target = PaymentTransaction.quotation_id == quotation_id
        else:
            return None
        query = (
            self._build_query()
            .filter(
                target,
                PaymentTransaction.transaction_type == TransactionType.PAYMENT.value,
                PaymentTransaction.status.in_(
                    (TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value)
                ),
            )
            .order_by(PaymentTransaction.created_at.desc())
        )
        return self._run("query", query.first)

    def sum_completed_since(self, consultant_id: str, since: datetime) -> Decimal:
        """Total of gateway payments completed for a consultant since ``since``."""
        query = self.db.query(func.coalesce(func.sum(PaymentTransaction.amount), 0)).filter(
            PaymentTransaction.consultant_id == consultant_id,
            PaymentTransaction.transaction_type == TransactionType.PAYMENT.value,
            PaymentTransaction.status == TransactionStatus.COMPLETED.value,
            PaymentTransaction.processed_at >= since,
        )
        return Decimal(str(self._execute_scalar(query) or 0))

    # ========== Guarded transitions ==========

    def complete_pending(
        self,
        transaction_id: str,
        *,
        gateway_payment_id: str,
        gateway_signature: Optional[str],
        gateway_response: Optional[Dict[str, Any]],
        processed_at: datetime,
        payment_method: Optional[str] = None,
    ) -> bool:
        """PENDING -> COMPLETED; False if the row had already left PENDING."""
        updated = self._guarded_update(
            [
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.status == TransactionStatus.PENDING.value,
            ],
            {
                "status": TransactionStatus.COMPLETED.value,
                "gateway_payment_id": gateway_payment_id,
                "gateway_signature": gateway_signature,
                "gateway_response": gateway_response,
                "processed_at": processed_at,
                "failure_reason": None,
                **({"payment_method": payment_method} if payment_method else {}),
            },
        )
        return updated == 1

    def fail_pending_by_order(
        self,
        gateway_order_id: str,
        *,
        failure_reason: str,
        gateway_response: Optional[Dict[str, Any]],
        processed_at: datetime,
    ) -> int:
        """PENDING -> FAILED for every transaction of an order."""
        return self._guarded_update(
            [
                PaymentTransaction.gateway_order_id == gateway_order_id,
                PaymentTransaction.status == TransactionStatus.PENDING.value,
            ],
            {
                "status": TransactionStatus.FAILED.value,
                "failure_reason": failure_reason,
                "gateway_response": gateway_response,
                "processed_at": processed_at,
            },
        )

    def mark_refunded(
        self,
        transaction_id: str,
        *,
        refunded_amount: Decimal,
        refunded_at: datetime,
        gateway_response: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """COMPLETED -> REFUNDED; False if someone else refunded it first."""
        values: Dict[str, Any] = {
            "status": TransactionStatus.REFUNDED.value,
            "refunded_amount": refunded_amount,
            "refunded_at": refunded_at,
        }
        if gateway_response is not None:
            values["gateway_response"] = gateway_response
        updated = self._guarded_update(
            [
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.status == TransactionStatus.COMPLETED.value,
            ],
            values,
        )
        return updated == 1
