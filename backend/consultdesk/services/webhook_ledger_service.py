"""
Webhook ledger: one row per (source, event id) delivery.

The row is written before any handler runs. Redeliveries bump its retry
counters, and the status column (received, processing, processed, ignored,
failed) decides whether a delivery may run the handler again.
"""

from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from consultdesk.core.exceptions import RepositoryException
from consultdesk.models.webhook_event import WebhookEvent
from consultdesk.repositories.factory import RepositoryFactory
from consultdesk.services.base import BaseService

REDACTED_HEADERS = frozenset({"authorization", "cookie", "x-razorpay-signature"})
PROCESSING_ERROR_MAX_LENGTH = 2000


class WebhookLedgerService(BaseService):
    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    @staticmethod
    def redact(headers: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if not headers:
            return None
        return {
            name: "***" if name.lower() in REDACTED_HEADERS else value
            for name, value in headers.items()
        }

    @staticmethod
    def elapsed_ms(started: float) -> int:
        """Milliseconds since a ``time.monotonic()`` reading."""
        return int((time.monotonic() - started) * 1000)

    def _record_redelivery(
        self, event: WebhookEvent, headers: Optional[dict[str, Any]]
    ) -> WebhookEvent:
        event.retry_count = (event.retry_count or 0) + 1
        event.last_retry_at = datetime.now(timezone.utc)
        if headers is not None:
            event.headers = headers
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        event_id: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, Any]] = None,
    ) -> WebhookEvent:
        """Ledger row for this delivery, inserting it on first sight."""
        headers = self.redact(headers)
        existing = self.repository.find_by_source_and_event_id(source, event_id)
        if existing is not None:
            return self._record_redelivery(existing, headers)
        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                headers=headers,
                status="received",
                received_at=datetime.now(timezone.utc),
                retry_count=0,
            )
        except RepositoryException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            # Concurrent delivery inserted it first
            self.db.rollback()
            existing = self.repository.find_by_source_and_event_id(source, event_id)
            if existing is None:
                raise
            return self._record_redelivery(existing, headers)

    @BaseService.measure_operation("webhook_ledger.mark_processing")
    def mark_processing(self, event: WebhookEvent) -> bool:
        """Claim the row for this worker; False when another worker holds or finished it."""
        if not self.repository.claim_for_processing(event.id):
            return False
        event.processing_error = None
        event.processed_at = None
        self.repository.flush()
        return True

    def _finish(
        self, event: WebhookEvent, status: str, duration_ms: Optional[int], **fields: Any
    ) -> WebhookEvent:
        event.status = status
        event.processed_at = datetime.now(timezone.utc)
        event.processing_duration_ms = duration_ms
        for name, value in fields.items():
            setattr(event, name, value)
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None,
        duration_ms: Optional[int] = None,
        status: str = "processed",
    ) -> WebhookEvent:
        return self._finish(
            event,
            status,
            duration_ms,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self, event: WebhookEvent, *, error: str, duration_ms: Optional[int] = None
    ) -> WebhookEvent:
        """Failed rows stay claimable, so the gateway's next redelivery retries them."""
        return self._finish(
            event, "failed", duration_ms, processing_error=error[:PROCESSING_ERROR_MAX_LENGTH]
        )
