"""Notification events written to the outbox.

Each ``NotificationKind`` has exactly one payload dataclass. Payload values
are JSON-safe (dates and amounts are strings) so a row can be replayed by the
outbox worker long after the request that created it.
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type


class NotificationKind(str, Enum):
    SESSION_BOOKED = "session.booked"
    SESSION_UPDATED = "session.updated"
    SESSION_CANCELLED = "session.cancelled"
    SESSION_REMINDER = "session.reminder"
    PAYMENT_CONFIRMED = "payment.confirmed"
    PAYMENT_RECEIVED = "payment.received"
    PAYMENT_REFUNDED = "payment.refunded"


@dataclass
class NotificationEvent:
    kind: ClassVar[NotificationKind]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionBooked(NotificationEvent):
    """Sent to the client after a session is booked."""

    kind: ClassVar[NotificationKind] = NotificationKind.SESSION_BOOKED

    session_id: str
    consultant_name: str
    client_name: str
    client_email: str
    title: str
    scheduled_date: Optional[str]
    scheduled_time: Optional[str]
    timezone: str
    amount: str
    currency: str
    meeting_link: Optional[str] = None
    booking_source: Optional[str] = None


@dataclass
class SessionUpdated(NotificationEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.SESSION_UPDATED

    session_id: str
    consultant_name: str
    client_name: str
    client_email: str
    title: str
    scheduled_date: Optional[str]
    scheduled_time: Optional[str]
    timezone: str
    meeting_link: Optional[str] = None


@dataclass
class SessionCancelled(NotificationEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.SESSION_CANCELLED

    session_id: str
    consultant_name: str
    client_name: str
    client_email: str
    title: str
    scheduled_date: Optional[str]
    scheduled_time: Optional[str]
    reason: Optional[str] = None


@dataclass
class SessionReminder(NotificationEvent):
    """Day-before reminder to the client."""

    kind: ClassVar[NotificationKind] = NotificationKind.SESSION_REMINDER

    session_id: str
    consultant_name: str
    client_name: str
    client_email: str
    title: str
    scheduled_date: str
    scheduled_time: str
    timezone: str
    meeting_link: Optional[str] = None


@dataclass
class PaymentConfirmed(NotificationEvent):
    """Receipt for the paying client."""

    kind: ClassVar[NotificationKind] = NotificationKind.PAYMENT_CONFIRMED

    transaction_id: str
    gateway_payment_id: str
    client_email: str
    amount: str
    currency: str
    session_id: Optional[str] = None
    quotation_id: Optional[str] = None
    meeting_link: Optional[str] = None


@dataclass
class PaymentReceived(NotificationEvent):
    """Heads-up for the consultant that a client paid."""

    kind: ClassVar[NotificationKind] = NotificationKind.PAYMENT_RECEIVED

    transaction_id: str
    consultant_id: str
    consultant_email: str
    client_email: str
    amount: str
    currency: str
    session_id: Optional[str] = None
    quotation_id: Optional[str] = None


@dataclass
class PaymentRefunded(NotificationEvent):
    kind: ClassVar[NotificationKind] = NotificationKind.PAYMENT_REFUNDED

    transaction_id: str
    gateway_payment_id: str
    client_email: str
    refunded_amount: str
    currency: str
    reason: Optional[str] = None
    session_id: Optional[str] = None


PAYLOAD_TYPES: Dict[NotificationKind, Type[NotificationEvent]] = {
    cls.kind: cls
    for cls in (
        SessionBooked,
        SessionUpdated,
        SessionCancelled,
        SessionReminder,
        PaymentConfirmed,
        PaymentReceived,
        PaymentRefunded,
    )
}


def parse_event(kind: str, payload: Dict[str, Any]) -> NotificationEvent:
    """Rebuild the typed event for an outbox row; unknown keys are dropped."""
    event_cls = PAYLOAD_TYPES[NotificationKind(kind)]
    allowed = {f.name for f in fields(event_cls)}
    return event_cls(**{k: v for k, v in payload.items() if k in allowed})
