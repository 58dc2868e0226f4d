# backend/consultdesk/services/webhook_service.py
"""
Webhook Ingress.

Authenticates Razorpay webhook deliveries against the raw body, records them
in the webhook ledger and dispatches them to the payment reconciler. The
ledger row is claimed with a guarded update so two deliveries of the same
event never run the reconciler concurrently.
"""

from dataclasses import dataclass
import hashlib
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import (
    InvalidSignatureException,
    PaymentAlreadyProcessedException,
    ValidationException,
    WebhookInProgressException,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .payment_gateway_service import PaymentGatewayService
from .payment_reconciliation_service import PaymentReconciliationService
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "razorpay"
EVENT_ID_HEADER = "x-razorpay-event-id"

# (related_entity_type, related_entity_id)
_Related = Tuple[Optional[str], Optional[str]]


@dataclass
class WebhookOutcome:
    event_type: str
    event_id: str
    status: str  # processed | duplicate | ignored


def _entity(body: Dict[str, Any], name: str) -> Dict[str, Any]:
    try:
        entity = body["payload"][name]["entity"]
    except (KeyError, TypeError) as exc:
        raise ValidationException(
            f"Webhook payload has no {name} entity", code="INVALID_WEBHOOK_PAYLOAD"
        ) from exc
    if not isinstance(entity, dict):
        raise ValidationException(
            f"Webhook payload has no {name} entity", code="INVALID_WEBHOOK_PAYLOAD"
        )
    return entity


def _require(entity: Dict[str, Any], field: str) -> str:
    value = entity.get(field)
    if not value:
        raise ValidationException(
            f"Webhook entity is missing {field}", code="INVALID_WEBHOOK_PAYLOAD"
        )
    return str(value)


class WebhookService(BaseService):
    """Verifies, dedupes and dispatches gateway webhook events."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayService,
        reconciler: PaymentReconciliationService,
        ledger: Optional[WebhookLedgerService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.reconciler = reconciler
        self.ledger = ledger or WebhookLedgerService(db)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], _Related]] = {
            "payment.captured": self._handle_payment_captured,
            "payment.failed": self._handle_payment_failed,
            "refund.processed": self._handle_refund_processed,
        }

    @BaseService.measure_operation("process_webhook_event")
    def process_webhook_event(
        self,
        raw_body: bytes,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Raises InvalidSignatureException before anything is parsed, and
        WebhookInProgressException when the same event is mid-flight elsewhere.
        Reconciler errors mark the ledger row failed and propagate so the
        gateway redelivers.
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            prometheus_metrics.record_webhook_event("unknown", "invalid_signature")
            self.logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureException("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationException(
                "Webhook body is not valid JSON", code="INVALID_WEBHOOK_PAYLOAD"
            ) from exc
        if not isinstance(body, dict):
            raise ValidationException(
                "Webhook body must be a JSON object", code="INVALID_WEBHOOK_PAYLOAD"
            )

        header_map = {k.lower(): v for k, v in (headers or {}).items()}
        event_type = str(body.get("event") or "unknown")
        event_id = header_map.get(EVENT_ID_HEADER) or self._derived_event_id(raw_body)

        with self.transaction():
            event = self.ledger.log_received(
                source=WEBHOOK_SOURCE,
                event_type=event_type,
                event_id=event_id,
                payload=body,
                headers=dict(header_map),
            )
        if event.status in ("processed", "ignored"):
            prometheus_metrics.record_webhook_event(event_type, "duplicate")
            self.logger.info("Webhook %s (%s) already handled", event_id, event_type)
            return WebhookOutcome(event_type=event_type, event_id=event_id, status="duplicate")

        with self.transaction():
            claimed = self.ledger.mark_processing(event)
        if not claimed:
            prometheus_metrics.record_webhook_event(event_type, "in_progress")
            raise WebhookInProgressException(event_id)

        handler = self._handlers.get(event_type)
        started = time.monotonic()
        if handler is None:
            self.logger.info("Acknowledging unhandled webhook type %s", event_type)
            with self.transaction():
                self.ledger.mark_processed(
                    event, duration_ms=self.ledger.elapsed_ms(started), status="ignored"
                )
            prometheus_metrics.record_webhook_event(event_type, "ignored")
            return WebhookOutcome(event_type=event_type, event_id=event_id, status="ignored")

        outcome = "processed"
        try:
            related_type, related_id = handler(body)
        except PaymentAlreadyProcessedException as exc:
            outcome = "duplicate"
            related_type, related_id = "order", exc.details.get("order_id")
            self.logger.info("Webhook %s is a no-op: %s", event_id, exc.message)
        except Exception as exc:
            self.logger.error("Webhook %s (%s) failed: %s", event_id, event_type, exc)
            with self.transaction():
                self.ledger.mark_failed(
                    event, error=str(exc), duration_ms=self.ledger.elapsed_ms(started)
                )
            prometheus_metrics.record_webhook_event(event_type, "failed")
            raise

        with self.transaction():
            self.ledger.mark_processed(
                event,
                related_entity_type=related_type,
                related_entity_id=related_id,
                duration_ms=self.ledger.elapsed_ms(started),
            )
        prometheus_metrics.record_webhook_event(event_type, outcome)
        return WebhookOutcome(event_type=event_type, event_id=event_id, status=outcome)

    @staticmethod
    def _derived_event_id(raw_body: bytes) -> str:
        return "sha256:" + hashlib.sha256(raw_body).hexdigest()

    # ---------------------------------------------------------------- handlers

    def _handle_payment_captured(self, body: Dict[str, Any]) -> _Related:
        payment = _entity(body, "payment")
        transaction = self.reconciler.complete_captured_payment(
            _require(payment, "order_id"), _require(payment, "id"), payment
        )
        return "payment_transaction", transaction.id

    def _handle_payment_failed(self, body: Dict[str, Any]) -> _Related:
        payment = _entity(body, "payment")
        order_id = _require(payment, "order_id")
        self.reconciler.handle_failed_payment(
            order_id, payment.get("error_code"), payment.get("error_description")
        )
        return "order", order_id

    def _handle_refund_processed(self, body: Dict[str, Any]) -> _Related:
        refund = _entity(body, "refund")
        transaction = self.reconciler.mark_refund_processed(_require(refund, "payment_id"), refund)
        return "payment_transaction", transaction.id
