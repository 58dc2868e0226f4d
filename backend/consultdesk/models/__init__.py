# backend/consultdesk/models/__init__.py
"""
SQLAlchemy models for the booking and payment engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .availability import AvailabilitySlot
from .client import Client
from .consultant import Consultant
from .event_outbox import EventOutbox, EventOutboxStatus
from .payment import PaymentTransaction
from .quotation import Quotation
from .session import ConsultationSession
from .webhook_event import WebhookEvent

__all__ = [
    "AvailabilitySlot",
    "Client",
    "Consultant",
    "ConsultationSession",
    "EventOutbox",
    "EventOutboxStatus",
    "PaymentTransaction",
    "Quotation",
    "WebhookEvent",
]
