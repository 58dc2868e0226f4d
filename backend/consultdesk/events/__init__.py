"""Notification events and the outbox publisher."""

from .notification_events import (
    NotificationEvent,
    NotificationKind,
    PaymentConfirmed,
    PaymentReceived,
    PaymentRefunded,
    SessionBooked,
    SessionCancelled,
    SessionReminder,
    SessionUpdated,
    parse_event,
)
from .publisher import NotificationPublisher

__all__ = [
    "NotificationEvent",
    "NotificationKind",
    "NotificationPublisher",
    "PaymentConfirmed",
    "PaymentReceived",
    "PaymentRefunded",
    "SessionBooked",
    "SessionCancelled",
    "SessionReminder",
    "SessionUpdated",
    "parse_event",
]
