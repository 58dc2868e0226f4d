# backend/consultdesk/dependencies.py
"""
Service layer dependencies for dependency injection.

Long-lived collaborators (gateway client, meeting provider registry, cache)
are built once and shared; services are created per request around the
request's database session. Tests override these with fakes through
``app.dependency_overrides``.
"""

from functools import lru_cache
import logging
from typing import Any, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .core.config import settings
from .core.exceptions import ValidationException
from .database import get_db
from .integrations import FakeRazorpayClient, RazorpayClient
from .services.booking_service import BookingService
from .services.cache_service import CacheService
from .services.meeting_service import MeetingService, build_default_providers
from .services.payment_gateway_service import PaymentGatewayService
from .services.payment_reconciliation_service import PaymentReconciliationService
from .services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_cache_service() -> CacheService:
    """Get singleton cache service instance."""
    return CacheService()


@lru_cache(maxsize=1)
def get_gateway_client() -> Any:
    """Razorpay client; the in-memory fake outside production when no key is configured."""
    key_secret = settings.secret_value(settings.razorpay_key_secret)
    if not key_secret and settings.environment != "production":
        logger.warning(
            "Razorpay key secret not configured; using FakeRazorpayClient",
            extra={"environment": settings.environment},
        )
        return FakeRazorpayClient()
    return RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=key_secret,
        base_url=settings.razorpay_base_url,
        timeout=settings.payment_gateway_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_meeting_service() -> MeetingService:
    return MeetingService(build_default_providers())


def get_current_consultant_id(
    x_consultant_id: Optional[str] = Header(default=None, alias="X-Consultant-Id"),
) -> str:
    """Acting consultant; authentication happens in front of this service."""
    if not x_consultant_id:
        raise ValidationException("X-Consultant-Id header is required", code="CONSULTANT_REQUIRED")
    return x_consultant_id


def get_booking_service(
    db: Session = Depends(get_db),
    meeting_service: MeetingService = Depends(get_meeting_service),
    cache: CacheService = Depends(get_cache_service),
) -> BookingService:
    return BookingService(db, meeting_service, cache)


def get_payment_gateway_service(
    db: Session = Depends(get_db),
    gateway_client: Any = Depends(get_gateway_client),
    cache: CacheService = Depends(get_cache_service),
) -> PaymentGatewayService:
    return PaymentGatewayService(db, gateway_client, cache)


def get_reconciliation_service(
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway_service),
    meeting_service: MeetingService = Depends(get_meeting_service),
    cache: CacheService = Depends(get_cache_service),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(db, gateway, meeting_service, cache)


def get_webhook_service(
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway_service),
    reconciler: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> WebhookService:
    return WebhookService(db, gateway, reconciler)
