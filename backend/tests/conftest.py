# backend/tests/conftest.py
"""
Pytest configuration.

Tests run against an in-memory SQLite database (one shared connection through
StaticPool) with fake gateway, meeting provider and notification sender
collaborators. Nothing here talks to the network.
"""

import os

# Set test mode BEFORE any consultdesk imports
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import hashlib
import hmac
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from consultdesk import models  # noqa: F401  registers every table
from consultdesk.core.timezone_utils import local_now
from consultdesk.database import Base
from consultdesk.integrations import FakeMeetingProvider, FakeRazorpayClient
from consultdesk.models.availability import AvailabilitySlot
from consultdesk.models.client import Client
from consultdesk.models.consultant import Consultant
from consultdesk.models.session import ConsultationSession
from consultdesk.schemas.payment import CreateOrderRequest
from consultdesk.services.booking_service import BookingService
from consultdesk.services.meeting_service import MeetingService
from consultdesk.services.notification_sender import InMemoryNotificationSender
from consultdesk.services.payment_gateway_service import PaymentGatewayService, to_minor_units
from consultdesk.services.payment_reconciliation_service import PaymentReconciliationService
from consultdesk.services.webhook_service import WebhookService

TEST_KEY_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"


def _sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# Domain data
# ============================================================================


@pytest.fixture
def future_date() -> date:
    """A day comfortably in the future in the booking timezone."""
    return local_now().date() + timedelta(days=7)


@pytest.fixture
def consultant(db: Session) -> Consultant:
    consultant = Consultant(
        email="asha.rao@example.com",
        first_name="Asha",
        last_name="Rao",
        slug="asha-rao",
        personal_session_price=Decimal("1000.00"),
        webinar_session_price=Decimal("500.00"),
        is_active=True,
        is_email_verified=True,
        is_approved_by_admin=True,
        google_access_token="google-access-token",
        google_token_expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        teams_access_token="teams-access-token",
        teams_token_expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        teams_user_email="asha@teams.example.com",
    )
    db.add(consultant)
    db.commit()
    return consultant


@pytest.fixture
def client_record(db: Session, consultant: Consultant) -> Client:
    client = Client(
        consultant_id=consultant.id,
        email="ravi.kumar@example.com",
        first_name="Ravi",
        last_name="Kumar",
        name="Ravi Kumar",
        is_active=True,
        total_sessions=0,
        total_amount_paid=Decimal("0"),
    )
    db.add(client)
    db.commit()
    return client


@pytest.fixture
def make_slot(db: Session, consultant: Consultant) -> Callable[..., AvailabilitySlot]:
    def _make_slot(
        slot_date: date,
        start_time: str = "10:00",
        end_time: str = "11:00",
        session_type: str = "PERSONAL",
    ) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            consultant_id=consultant.id,
            session_type=session_type,
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            is_booked=False,
            is_blocked=False,
        )
        db.add(slot)
        db.commit()
        return slot

    return _make_slot


@pytest.fixture
def make_session(db: Session, consultant: Consultant, client_record: Client):
    """Insert a session row directly (no booking rules applied)."""

    def _make_session(
        scheduled_date: Optional[date],
        scheduled_time: Optional[str] = "10:00",
        *,
        status: str = "CONFIRMED",
        payment_status: str = "PENDING",
        amount: Decimal = Decimal("1000.00"),
        **overrides,
    ) -> ConsultationSession:
        values = dict(
            consultant_id=consultant.id,
            client_id=client_record.id,
            title="1-on-1 Session with Ravi",
            session_type="PERSONAL",
            status=status,
            payment_status=payment_status,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time if scheduled_date else None,
            duration_minutes=60,
            timezone="Asia/Kolkata",
            amount=amount,
            currency="INR",
            payment_method="online",
            platform="MEET",
            booking_source="manually_added",
        )
        values.update(overrides)
        session = ConsultationSession(**values)
        db.add(session)
        db.commit()
        return session

    return _make_session


# ============================================================================
# Collaborators
# ============================================================================


@pytest.fixture
def meeting_providers() -> dict:
    return {
        "MEET": FakeMeetingProvider("MEET"),
        "TEAMS": FakeMeetingProvider("TEAMS"),
        "ZOOM": FakeMeetingProvider("ZOOM", uses_consultant_token=False),
    }


@pytest.fixture
def meeting_service(meeting_providers) -> MeetingService:
    return MeetingService(meeting_providers)


@pytest.fixture
def gateway_client() -> FakeRazorpayClient:
    return FakeRazorpayClient()


@pytest.fixture
def notification_sender() -> InMemoryNotificationSender:
    return InMemoryNotificationSender()


@pytest.fixture
def booking_service(db: Session, meeting_service: MeetingService) -> BookingService:
    return BookingService(db, meeting_service)


@pytest.fixture
def gateway_service(db: Session, gateway_client: FakeRazorpayClient) -> PaymentGatewayService:
    return PaymentGatewayService(
        db,
        gateway_client,
        key_secret=TEST_KEY_SECRET,
        webhook_secret=TEST_WEBHOOK_SECRET,
    )


@pytest.fixture
def reconciler(
    db: Session, gateway_service: PaymentGatewayService, meeting_service: MeetingService
) -> PaymentReconciliationService:
    return PaymentReconciliationService(db, gateway_service, meeting_service)


@pytest.fixture
def webhook_service(
    db: Session,
    gateway_service: PaymentGatewayService,
    reconciler: PaymentReconciliationService,
) -> WebhookService:
    return WebhookService(db, gateway_service, reconciler)


# ============================================================================
# Signing helpers
# ============================================================================


@pytest.fixture
def sign_payment() -> Callable[[str, str], str]:
    """Checkout callback signature for (order_id, payment_id)."""

    def _sign_payment(order_id: str, payment_id: str) -> str:
        return _sign(TEST_KEY_SECRET, f"{order_id}|{payment_id}".encode("utf-8"))

    return _sign_payment


@pytest.fixture
def sign_webhook() -> Callable[[bytes], str]:
    def _sign_webhook(raw_body: bytes) -> str:
        return _sign(TEST_WEBHOOK_SECRET, raw_body)

    return _sign_webhook


@pytest.fixture
def open_order(consultant: Consultant, gateway_service: PaymentGatewayService, gateway_client):
    """Create a gateway order (PENDING transaction) and register its gateway payment."""

    def _open_order(
        session: Optional[ConsultationSession] = None,
        *,
        amount: Decimal = Decimal("1000.00"),
        payment_id: str = "pay_test_0001",
        quotation_id: Optional[str] = None,
        payment_status: str = "captured",
    ):
        order = gateway_service.create_order(
            consultant.id,
            CreateOrderRequest(
                amount=amount,
                session_id=session.id if session is not None else None,
                quotation_id=quotation_id,
            ),
        )
        gateway_client.add_payment(
            payment_id,
            order_id=order.order_id,
            amount_minor=to_minor_units(amount),
            status=payment_status,
        )
        return order

    return _open_order
