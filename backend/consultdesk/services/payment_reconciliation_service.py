# backend/consultdesk/services/payment_reconciliation_service.py
"""
Payment Reconciler.

Owns the PaymentTransaction state machine:

    PENDING -> COMPLETED | FAILED
    COMPLETED -> REFUNDED

Every transition is a guarded update keyed on the expected current status.
The caller that changes the row runs the fan-out (session, client ledger,
quotation, notifications); every other caller gets
``PaymentAlreadyProcessedException``. That is what makes the checkout
callback and the ``payment.captured`` webhook safe to race and to replay.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    CANCELLABLE_SESSION_STATUSES,
    PaymentMethod,
    SessionPaymentStatus,
    SessionStatus,
    TransactionStatus,
    TransactionType,
)
from ..core.exceptions import (
    InvalidSignatureException,
    NotFoundException,
    PaymentAlreadyProcessedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, now_utc
from ..events.notification_events import PaymentConfirmed, PaymentReceived, PaymentRefunded
from ..events.publisher import NotificationPublisher
from ..integrations.meeting_providers import MeetingLink, MeetingProviderError
from ..models.payment import PaymentTransaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .cache_service import CacheService
from .meeting_service import MeetingService
from .payment_gateway_service import PaymentGatewayService, from_minor_units

logger = logging.getLogger(__name__)

CAPTURED = "captured"
DEFAULT_REFUND_REASON = "Requested by consultant"

# A refund moves any session that has not already been cancelled or returned.
_REFUNDABLE_SESSION_STATUSES = tuple(
    s.value
    for s in SessionStatus
    if s not in (SessionStatus.CANCELLED, SessionStatus.RETURNED)
)


class PaymentReconciliationService(BaseService):
    """Applies gateway outcomes to transactions and their dependents exactly once."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayService,
        meeting_service: Optional[MeetingService] = None,
        cache: Optional[CacheService] = None,
        publisher: Optional[NotificationPublisher] = None,
    ):
        super().__init__(db, cache)
        self.gateway = gateway
        self.meeting_service = meeting_service
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.consultant_repository = RepositoryFactory.create_consultant_repository(db)
        self.quotation_repository = RepositoryFactory.create_quotation_repository(db)
        self.publisher = publisher or NotificationPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # -------------------------------------------------------------- completion

    @BaseService.measure_operation("process_successful_payment")
    def process_successful_payment(
        self, order_id: str, payment_id: str, signature: str
    ) -> PaymentTransaction:
        """
        Complete a payment reported by the checkout callback.

        The signature is always checked first, whatever the gateway says about
        the payment.
        """
        if not self.gateway.verify_payment_signature(order_id, payment_id, signature):
            prometheus_metrics.record_payment_transition("complete", "rejected")
            self.logger.warning("Invalid payment signature for order %s", order_id)
            raise InvalidSignatureException()

        payment = self.gateway.fetch_payment(payment_id)
        self._require_captured(payment, order_id)
        return self._complete(order_id, payment_id, signature, payment)

    @BaseService.measure_operation("complete_captured_payment")
    def complete_captured_payment(
        self,
        order_id: str,
        payment_id: str,
        gateway_payload: Optional[Dict[str, Any]] = None,
    ) -> PaymentTransaction:
        """Webhook entry point; the delivery itself was authenticated by the webhook signature."""
        payment = dict(gateway_payload or {})
        if payment.get("status") != CAPTURED:
            payment = self.gateway.fetch_payment(payment_id)
        self._require_captured(payment, order_id)
        return self._complete(order_id, payment_id, None, payment)

    @staticmethod
    def _require_captured(payment: Dict[str, Any], order_id: str) -> None:
        payment_order = payment.get("order_id")
        if payment_order and payment_order != order_id:
            raise ValidationException(
                "Payment does not belong to this order",
                code="PAYMENT_ORDER_MISMATCH",
                details={"order_id": order_id, "payment_order_id": payment_order},
            )
        if payment.get("status") != CAPTURED:
            raise ValidationException(
                "Payment has not been captured",
                code="PAYMENT_NOT_CAPTURED",
                details={"order_id": order_id, "gateway_status": payment.get("status")},
            )

    def _complete(
        self,
        order_id: str,
        payment_id: str,
        signature: Optional[str],
        payment: Dict[str, Any],
    ) -> PaymentTransaction:
        transaction = self.payment_repository.get_pending_by_order_id(order_id)
        if transaction is None:
            existing = self.payment_repository.get_by_order_id(order_id)
            if existing is None:
                raise NotFoundException(
                    "Payment order not found",
                    code="PAYMENT_ORDER_NOT_FOUND",
                    details={"order_id": order_id},
                )
            prometheus_metrics.record_payment_transition("complete", "noop")
            raise PaymentAlreadyProcessedException(order_id, existing.status)

        processed_at = now_utc()
        gateway_response = dict(transaction.gateway_response or {})
        gateway_response["payment"] = payment
        meeting = self._prepare_deferred_meeting(transaction)
        try:
            with self.transaction():
                if not self.payment_repository.complete_pending(
                    transaction.id,
                    gateway_payment_id=payment_id,
                    gateway_signature=signature,
                    gateway_response=gateway_response,
                    processed_at=processed_at,
                    payment_method=payment.get("method"),
                ):
                    prometheus_metrics.record_payment_transition("complete", "noop")
                    raise PaymentAlreadyProcessedException(order_id)
                self._fan_out_completion(transaction, payment_id, processed_at, meeting)
        finally:
            if meeting is not None:
                self._discard_unused_meeting(transaction.session_id, meeting)

        prometheus_metrics.record_payment_transition("complete", "applied")
        self.logger.info(
            "Payment %s completed order %s (%s %s)",
            payment_id,
            order_id,
            transaction.amount,
            transaction.currency,
        )
        self._invalidate_payment_caches(transaction.consultant_id)
        return transaction

    def _fan_out_completion(
        self,
        transaction: PaymentTransaction,
        payment_id: str,
        processed_at: datetime,
        meeting: Optional[MeetingLink] = None,
    ) -> None:
        meeting_link = None
        if transaction.session_id:
            meeting_link = self._settle_session(transaction.session_id, payment_id, meeting)
        if transaction.client_id:
            self.client_repository.apply_ledger_delta(
                transaction.client_id, amount=transaction.amount
            )
        if transaction.quotation_id:
            self.quotation_repository.mark_accepted(transaction.quotation_id, processed_at)

        if transaction.client_email:
            self.publisher.publish(
                PaymentConfirmed(
                    transaction_id=transaction.id,
                    gateway_payment_id=payment_id,
                    client_email=transaction.client_email,
                    amount=str(transaction.amount),
                    currency=transaction.currency,
                    session_id=transaction.session_id,
                    quotation_id=transaction.quotation_id,
                    meeting_link=meeting_link,
                ),
                aggregate_id=transaction.id,
            )
        consultant = self.consultant_repository.get_by_id(transaction.consultant_id)
        if consultant is not None:
            self.publisher.publish(
                PaymentReceived(
                    transaction_id=transaction.id,
                    consultant_id=consultant.id,
                    consultant_email=consultant.email,
                    client_email=transaction.client_email or "",
                    amount=str(transaction.amount),
                    currency=transaction.currency,
                    session_id=transaction.session_id,
                    quotation_id=transaction.quotation_id,
                ),
                aggregate_id=transaction.id,
            )

    def _settle_session(
        self, session_id: str, payment_id: str, meeting: Optional[MeetingLink] = None
    ) -> Optional[str]:
        """Mark the session PAID / CONFIRMED and attach a prepared meeting link."""
        moved = self.session_repository.transition(
            session_id,
            from_statuses=CANCELLABLE_SESSION_STATUSES,
            status=SessionStatus.CONFIRMED.value,
            payment_status=SessionPaymentStatus.PAID.value,
            payment_id=payment_id,
            payment_method=PaymentMethod.ONLINE.value,
        )
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            return None
        if not moved:
            # Paid after a cancel or completion: record the money, keep the status.
            self.logger.warning(
                "Payment %s settled session %s in status %s", payment_id, session_id, session.status
            )
            self.session_repository.update(
                session_id,
                payment_status=SessionPaymentStatus.PAID.value,
                payment_id=payment_id,
                payment_method=PaymentMethod.ONLINE.value,
            )
            return session.meeting_link

        if session.needs_meeting_link and meeting is not None:
            session.meeting_link = meeting.meeting_link
            session.meeting_id = meeting.meeting_id
            session.meeting_password = meeting.password
            self.session_repository.flush()
        return session.meeting_link

    def _prepare_deferred_meeting(self, transaction: PaymentTransaction) -> Optional[MeetingLink]:
        """
        Create the meeting a paid session is still missing.

        Runs before the completion transaction opens. The link is attached by
        ``_settle_session`` only if this caller wins the transition.
        """
        if not transaction.session_id or self.meeting_service is None:
            return None
        session = self.session_repository.get_by_id(transaction.session_id)
        if session is None or not session.needs_meeting_link or not session.is_cancellable:
            return None
        consultant = self.consultant_repository.get_by_id(session.consultant_id)
        client = self.client_repository.get_by_id(session.client_id)
        if consultant is None or client is None:
            return None
        self.end_read_transaction()
        try:
            return self.meeting_service.provision_for_session(session, consultant, client)
        except MeetingProviderError as exc:
            self.logger.warning(
                "Deferred meeting for session %s still unavailable: %s (%s)",
                session.id,
                exc.message,
                exc.kind.value,
            )
            return None

    def _discard_unused_meeting(self, session_id: Optional[str], meeting: MeetingLink) -> None:
        """Cancel a prepared meeting that did not end up on the session."""
        session = self.session_repository.get_by_id(session_id) if session_id else None
        if session is None or session.meeting_id == meeting.meeting_id:
            return
        consultant = self.consultant_repository.get_by_id(session.consultant_id)
        if consultant is None:
            return
        self.logger.info("Cancelling unused meeting %s for session %s", meeting.meeting_id, session_id)
        self.meeting_service.cancel_meeting(session.platform, meeting.meeting_id, consultant)

    # ----------------------------------------------------------------- failure

    @BaseService.measure_operation("handle_failed_payment")
    def handle_failed_payment(
        self,
        order_id: str,
        error_code: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> int:
        """Mark every PENDING transaction of the order FAILED; returns how many moved."""
        failed_at = now_utc()
        with self.transaction():
            count = self.payment_repository.fail_pending_by_order(
                order_id,
                failure_reason=error_description or error_code or "Payment failed",
                gateway_response={
                    "error_code": error_code,
                    "error_description": error_description,
                    "failed_at": failed_at.isoformat(),
                },
                processed_at=failed_at,
            )
        prometheus_metrics.record_payment_transition("fail", "applied" if count else "noop")
        self.logger.info("Marked %d transaction(s) failed for order %s", count, order_id)
        return count

    # ------------------------------------------------------------------ refund

    @BaseService.measure_operation("process_refund")
    def process_refund(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        consultant_id: Optional[str] = None,
    ) -> PaymentTransaction:
        """Refund a completed payment through the gateway and unwind the ledger."""
        transaction = self.payment_repository.get_by_payment_id(payment_id)
        if transaction is None or (consultant_id and transaction.consultant_id != consultant_id):
            raise NotFoundException("Payment not found", code="PAYMENT_NOT_FOUND")
        self._require_refundable(transaction)

        reference = transaction.processed_at or transaction.created_at
        if reference is not None and now_utc() - ensure_utc(reference) > timedelta(
            days=settings.refund_window_days
        ):
            raise ValidationException(
                f"Refunds are only possible within {settings.refund_window_days} days of payment",
                code="REFUND_WINDOW_EXPIRED",
            )

        refund_amount = Decimal(amount) if amount is not None else Decimal(transaction.amount)
        if refund_amount > transaction.amount:
            raise ValidationException(
                "Refund amount exceeds the payment amount",
                code="REFUND_AMOUNT_EXCEEDED",
                details={"amount": str(transaction.amount), "requested": str(refund_amount)},
            )

        reason = reason or DEFAULT_REFUND_REASON
        refund = self.gateway.refund(
            payment_id,
            refund_amount,
            notes={"reason": reason, "consultant_id": consultant_id or transaction.consultant_id},
        )
        self._apply_refund(transaction, refund_amount, reason, refund)
        return transaction

    @BaseService.measure_operation("mark_refund_processed")
    def mark_refund_processed(
        self, payment_id: str, refund_payload: Optional[Dict[str, Any]] = None
    ) -> PaymentTransaction:
        """``refund.processed`` webhook: record a refund issued at the gateway."""
        refund = dict(refund_payload or {})
        transaction = self.payment_repository.get_by_payment_id(payment_id)
        if transaction is None:
            raise NotFoundException(
                "Payment not found", code="PAYMENT_NOT_FOUND", details={"payment_id": payment_id}
            )
        if transaction.status != TransactionStatus.COMPLETED.value:
            prometheus_metrics.record_payment_transition("refund", "noop")
            raise PaymentAlreadyProcessedException(
                transaction.gateway_order_id, transaction.status
            )

        refund_amount = from_minor_units(refund.get("amount")) or Decimal(transaction.amount)
        refund_amount = min(refund_amount, Decimal(transaction.amount))
        notes = refund.get("notes") if isinstance(refund.get("notes"), dict) else {}
        self._apply_refund(transaction, refund_amount, notes.get("reason"), refund)
        return transaction

    def _require_refundable(self, transaction: PaymentTransaction) -> None:
        if transaction.status == TransactionStatus.REFUNDED.value:
            prometheus_metrics.record_payment_transition("refund", "noop")
            raise PaymentAlreadyProcessedException(
                transaction.gateway_order_id, transaction.status
            )
        if transaction.status != TransactionStatus.COMPLETED.value:
            raise ValidationException(
                "Only completed payments can be refunded",
                code="PAYMENT_NOT_REFUNDABLE",
                details={"status": transaction.status},
            )
        if transaction.transaction_type == TransactionType.OFFLINE.value:
            raise ValidationException(
                "Offline payments cannot be refunded through the gateway",
                code="PAYMENT_NOT_REFUNDABLE",
                details={"transaction_type": transaction.transaction_type},
            )

    def _apply_refund(
        self,
        transaction: PaymentTransaction,
        refund_amount: Decimal,
        reason: Optional[str],
        refund: Dict[str, Any],
    ) -> None:
        refunded_at = now_utc()
        gateway_response = dict(transaction.gateway_response or {})
        gateway_response["refund"] = refund
        with self.transaction():
            if not self.payment_repository.mark_refunded(
                transaction.id,
                refunded_amount=refund_amount,
                refunded_at=refunded_at,
                gateway_response=gateway_response,
            ):
                prometheus_metrics.record_payment_transition("refund", "noop")
                raise PaymentAlreadyProcessedException(transaction.gateway_order_id)

            if transaction.session_id:
                self.session_repository.update(
                    transaction.session_id,
                    payment_status=SessionPaymentStatus.REFUNDED.value,
                )
                self.session_repository.transition(
                    transaction.session_id,
                    from_statuses=_REFUNDABLE_SESSION_STATUSES,
                    status=SessionStatus.RETURNED.value,
                )
            if transaction.client_id:
                self.client_repository.apply_ledger_delta(
                    transaction.client_id, amount=-refund_amount
                )
            if transaction.client_email:
                self.publisher.publish(
                    PaymentRefunded(
                        transaction_id=transaction.id,
                        gateway_payment_id=transaction.gateway_payment_id,
                        client_email=transaction.client_email,
                        refunded_amount=str(refund_amount),
                        currency=transaction.currency,
                        reason=reason,
                        session_id=transaction.session_id,
                    ),
                    aggregate_id=transaction.id,
                )

        prometheus_metrics.record_payment_transition("refund", "applied")
        self.logger.info(
            "Refunded %s %s on payment %s",
            refund_amount,
            transaction.currency,
            transaction.gateway_payment_id,
        )
        self._invalidate_payment_caches(transaction.consultant_id)

    def _invalidate_payment_caches(self, consultant_id: str) -> None:
        for pattern in (
            f"dashboard_*:{consultant_id}:*",
            f"sessions:{consultant_id}:*",
            f"clients:{consultant_id}:*",
        ):
            self.invalidate_pattern(pattern)
