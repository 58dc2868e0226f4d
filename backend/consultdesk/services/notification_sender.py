# backend/consultdesk/services/notification_sender.py
"""
Notification sender boundary used by the outbox dispatcher.

Email rendering and transport live outside this backend; the dispatcher only
needs ``send(kind, payload, idempotency_key) -> bool``. A False return or a
``NotificationSenderTemporaryError`` makes the outbox retry with backoff.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Set

from consultdesk.events.notification_events import NotificationKind

logger = logging.getLogger(__name__)

SUBJECTS: Dict[NotificationKind, str] = {
    NotificationKind.SESSION_BOOKED: "Your session is booked",
    NotificationKind.SESSION_UPDATED: "Your session has been rescheduled",
    NotificationKind.SESSION_CANCELLED: "Your session has been cancelled",
    NotificationKind.SESSION_REMINDER: "Reminder: your session is tomorrow",
    NotificationKind.PAYMENT_CONFIRMED: "Payment received - thank you",
    NotificationKind.PAYMENT_RECEIVED: "You received a payment",
    NotificationKind.PAYMENT_REFUNDED: "Your refund has been processed",
}


class NotificationSenderTemporaryError(RuntimeError):
    """Transient delivery failure; the outbox retries."""


class NotificationSender(Protocol):
    def send(
        self, kind: NotificationKind, payload: Dict[str, Any], idempotency_key: str
    ) -> bool:
        ...


def recipient_for(payload: Dict[str, Any]) -> str | None:
    return payload.get("consultant_email") or payload.get("client_email")


class LoggingNotificationSender:
    """Default sender: logs the notification instead of delivering it."""

    def send(
        self, kind: NotificationKind, payload: Dict[str, Any], idempotency_key: str
    ) -> bool:
        recipient = recipient_for(payload)
        if not recipient:
            logger.warning("Notification %s has no recipient (key=%s)", kind.value, idempotency_key)
            return False
        logger.info(
            "Notification %s -> %s: %s",
            kind.value,
            recipient,
            SUBJECTS.get(kind, kind.value),
            extra={"idempotency_key": idempotency_key},
        )
        return True


class InMemoryNotificationSender:
    """Records sends; duplicate idempotency keys are acknowledged without resending."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self._seen_keys: Set[str] = set()
        self.fail_with: Exception | None = None

    def send(
        self, kind: NotificationKind, payload: Dict[str, Any], idempotency_key: str
    ) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        if idempotency_key in self._seen_keys:
            return True
        self._seen_keys.add(idempotency_key)
        self.sent.append(
            {
                "kind": kind,
                "payload": dict(payload),
                "idempotency_key": idempotency_key,
                "subject": SUBJECTS.get(kind),
            }
        )
        return True

    def kinds(self) -> List[NotificationKind]:
        return [entry["kind"] for entry in self.sent]
