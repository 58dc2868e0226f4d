# backend/consultdesk/repositories/factory.py
"""
Repository Factory.

Central place where services obtain repository instances, so tests can patch
a single seam when they need a repository double.
"""

from sqlalchemy.orm import Session

from .availability_repository import AvailabilityRepository
from .client_repository import ClientRepository
from .consultant_repository import ConsultantRepository
from .event_outbox_repository import EventOutboxRepository
from .payment_repository import PaymentRepository
from .quotation_repository import QuotationRepository
from .session_repository import SessionRepository
from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_consultant_repository(db: Session) -> ConsultantRepository:
        return ConsultantRepository(db)

    @staticmethod
    def create_client_repository(db: Session) -> ClientRepository:
        return ClientRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> SessionRepository:
        return SessionRepository(db)

    @staticmethod
    def create_availability_repository(db: Session) -> AvailabilityRepository:
        return AvailabilityRepository(db)

    @staticmethod
    def create_quotation_repository(db: Session) -> QuotationRepository:
        return QuotationRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        return PaymentRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> WebhookEventRepository:
        return WebhookEventRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> EventOutboxRepository:
        return EventOutboxRepository(db)
