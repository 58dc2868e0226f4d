# backend/consultdesk/repositories/__init__.py
"""
Repository layer.

Repositories wrap SQLAlchemy queries for one model each and never commit;
services own the unit of work.

Usage:
    from consultdesk.repositories import RepositoryFactory

    repository = RepositoryFactory.create_session_repository(db)
    clash = repository.find_active_in_slot(consultant_id, day, "10:00")
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .client_repository import ClientRepository
from .consultant_repository import ConsultantRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .quotation_repository import QuotationRepository
from .session_repository import SessionRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "ClientRepository",
    "ConsultantRepository",
    "EventOutboxRepository",
    "PaymentRepository",
    "QuotationRepository",
    "RepositoryFactory",
    "SessionRepository",
    "WebhookEventRepository",
]
