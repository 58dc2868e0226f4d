from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import update

from consultdesk.core.exceptions import (
    InvalidSignatureException,
    NotFoundException,
    PaymentAlreadyProcessedException,
    ProviderException,
    ValidationException,
)
from consultdesk.core.timezone_utils import now_utc
from consultdesk.integrations import FakeMeetingProvider, RazorpayError
from consultdesk.models.event_outbox import EventOutbox
from consultdesk.models.payment import PaymentTransaction
from consultdesk.models.quotation import Quotation
from consultdesk.schemas.booking import PublicBookingRequest, SessionCreate


def _outbox(db, event_type):
    return db.query(EventOutbox).filter_by(event_type=event_type).all()


@pytest.fixture
def paid_session(db, make_session, open_order, reconciler, sign_payment, future_date):
    """A PENDING session whose order was paid through the checkout callback."""
    session = make_session(future_date, status="PENDING")
    order = open_order(session)
    reconciler.process_successful_payment(
        order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
    )
    return session


# -------------------------------------------------------------- completion


def test_successful_payment_confirms_session_and_credits_client(
    db, reconciler, make_session, open_order, sign_payment, client_record, future_date
):
    session = make_session(future_date, status="PENDING")
    order = open_order(session)
    signature = sign_payment(order.order_id, "pay_test_0001")

    transaction = reconciler.process_successful_payment(order.order_id, "pay_test_0001", signature)

    assert transaction.status == "COMPLETED"
    assert transaction.gateway_payment_id == "pay_test_0001"
    assert transaction.gateway_signature == signature
    assert transaction.payment_method == "card"
    assert transaction.processed_at is not None
    assert transaction.gateway_response["payment"]["status"] == "captured"
    assert "order" in transaction.gateway_response

    db.refresh(session)
    assert session.status == "CONFIRMED"
    assert session.payment_status == "PAID"
    assert session.payment_id == "pay_test_0001"
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("1000.00")

    confirmed = _outbox(db, "payment.confirmed")
    assert len(confirmed) == 1
    assert confirmed[0].payload["client_email"] == "ravi.kumar@example.com"
    assert len(_outbox(db, "payment.received")) == 1


def test_replayed_payment_is_rejected_without_side_effects(
    db, reconciler, paid_session, sign_payment, client_record
):
    transaction = db.query(PaymentTransaction).filter_by(session_id=paid_session.id).one()
    order_id = transaction.gateway_order_id

    with pytest.raises(PaymentAlreadyProcessedException) as exc_info:
        reconciler.process_successful_payment(
            order_id, "pay_test_0001", sign_payment(order_id, "pay_test_0001")
        )

    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"order_id": order_id, "status": "COMPLETED"}
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("1000.00")
    assert len(_outbox(db, "payment.confirmed")) == 1


def test_invalid_signature_never_reaches_the_gateway(db, reconciler, open_order, gateway_client):
    order = open_order()

    with pytest.raises(InvalidSignatureException) as exc_info:
        reconciler.process_successful_payment(order.order_id, "pay_test_0001", "deadbeef")

    assert exc_info.value.code == "INVALID_SIGNATURE"
    assert "fetch_payment" not in [call["method"] for call in gateway_client._calls]
    assert db.query(PaymentTransaction).one().status == "PENDING"


def test_uncaptured_payment_is_not_completed(db, reconciler, open_order, sign_payment):
    order = open_order(payment_status="authorized")

    with pytest.raises(ValidationException) as exc_info:
        reconciler.process_successful_payment(
            order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
        )

    assert exc_info.value.code == "PAYMENT_NOT_CAPTURED"
    assert exc_info.value.details["gateway_status"] == "authorized"
    assert db.query(PaymentTransaction).one().status == "PENDING"


def test_payment_from_another_order_is_rejected(db, reconciler, open_order, sign_payment):
    open_order(payment_id="pay_a")
    order_b = open_order(payment_id="pay_b")

    with pytest.raises(ValidationException) as exc_info:
        reconciler.process_successful_payment(
            order_b.order_id, "pay_a", sign_payment(order_b.order_id, "pay_a")
        )

    assert exc_info.value.code == "PAYMENT_ORDER_MISMATCH"
    statuses = {t.status for t in db.query(PaymentTransaction).all()}
    assert statuses == {"PENDING"}


def test_unknown_order_is_not_found(reconciler, gateway_client, sign_payment):
    gateway_client.add_payment("pay_orphan", order_id="order_missing", amount_minor=50000)

    with pytest.raises(NotFoundException) as exc_info:
        reconciler.process_successful_payment(
            "order_missing", "pay_orphan", sign_payment("order_missing", "pay_orphan")
        )

    assert exc_info.value.code == "PAYMENT_ORDER_NOT_FOUND"


def test_captured_payload_skips_gateway_lookup(db, reconciler, open_order, gateway_client):
    order = open_order()
    payload = {"id": "pay_test_0001", "order_id": order.order_id, "status": "captured", "method": "upi"}

    transaction = reconciler.complete_captured_payment(order.order_id, "pay_test_0001", payload)

    assert transaction.status == "COMPLETED"
    assert transaction.payment_method == "upi"
    assert transaction.gateway_signature is None
    assert "fetch_payment" not in [call["method"] for call in gateway_client._calls]


def test_stale_payload_status_is_rechecked_at_the_gateway(reconciler, open_order, gateway_client):
    order = open_order()
    payload = {"id": "pay_test_0001", "order_id": order.order_id, "status": "authorized"}

    transaction = reconciler.complete_captured_payment(order.order_id, "pay_test_0001", payload)

    assert transaction.status == "COMPLETED"
    assert {"method": "fetch_payment", "payment_id": "pay_test_0001"} in gateway_client._calls


def test_quotation_payment_marks_quotation_accepted(db, reconciler, consultant, open_order):
    quotation = Quotation(
        consultant_id=consultant.id,
        client_email="meera.iyer@example.com",
        client_name="Meera Iyer",
        title="Quarterly advisory retainer",
        final_amount=Decimal("2500.00"),
        status="SENT",
    )
    db.add(quotation)
    db.commit()
    order = open_order(amount=Decimal("2500.00"), quotation_id=quotation.id)

    reconciler.complete_captured_payment(order.order_id, "pay_test_0001")

    db.refresh(quotation)
    assert quotation.status == "ACCEPTED"
    assert quotation.responded_at is not None
    assert _outbox(db, "payment.confirmed")[0].payload["quotation_id"] == quotation.id


def test_payment_provisions_deferred_meeting(
    db, reconciler, booking_service, consultant, make_slot, open_order, sign_payment, future_date
):
    consultant.google_access_token = None
    db.commit()
    make_slot(future_date)
    booking = booking_service.book_session(
        PublicBookingRequest(
            consultant_slug=consultant.slug,
            full_name="Priya Sharma",
            email="priya.sharma@example.com",
            session_type="PERSONAL",
            scheduled_date=future_date,
            scheduled_time="10:00",
            amount=Decimal("1000.00"),
        )
    )
    assert booking.meeting_deferred is True

    consultant.google_access_token = "reconnected-token"
    db.commit()
    order = open_order(booking.session)
    reconciler.process_successful_payment(
        order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
    )

    session = booking.session
    db.refresh(session)
    assert session.status == "CONFIRMED"
    assert session.meeting_link.startswith("https://meet.example.test/")
    assert _outbox(db, "payment.confirmed")[0].payload["meeting_link"] == session.meeting_link


def test_payment_still_completes_when_deferred_meeting_fails(
    db, reconciler, make_session, consultant, open_order, sign_payment, future_date
):
    consultant.google_access_token = None
    db.commit()
    session = make_session(future_date, status="PENDING")
    order = open_order(session)

    transaction = reconciler.process_successful_payment(
        order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
    )

    assert transaction.status == "COMPLETED"
    db.refresh(session)
    assert session.status == "CONFIRMED"
    assert session.meeting_link is None


def test_deferred_meeting_is_created_outside_the_completion_transaction(
    db, reconciler, make_session, meeting_providers, open_order, sign_payment, future_date
):
    session = make_session(future_date, status="PENDING")
    order = open_order(session)
    provider = meeting_providers["MEET"]
    seen_in_transaction = []

    def _create_meeting(details, credential=None):
        seen_in_transaction.append(db.in_transaction())
        return FakeMeetingProvider.create_meeting(provider, details, credential)

    with patch.object(provider, "create_meeting", side_effect=_create_meeting):
        reconciler.process_successful_payment(
            order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
        )

    assert seen_in_transaction == [False]
    db.refresh(session)
    assert session.meeting_link.startswith("https://meet.example.test/")


def test_prepared_meeting_is_cancelled_when_completion_loses_the_race(
    db, reconciler, make_session, meeting_providers, open_order, sign_payment, future_date
):
    session = make_session(future_date, status="PENDING")
    order = open_order(session)

    with patch.object(reconciler.payment_repository, "complete_pending", return_value=False):
        with pytest.raises(PaymentAlreadyProcessedException):
            reconciler.process_successful_payment(
                order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
            )

    calls = meeting_providers["MEET"]._calls
    assert [call["method"] for call in calls] == ["create_meeting", "cancel_meeting"]
    db.refresh(session)
    assert session.meeting_link is None
    assert session.payment_status == "PENDING"


def test_payment_after_cancellation_keeps_session_cancelled(
    db, reconciler, make_session, open_order, sign_payment, client_record, future_date
):
    session = make_session(future_date, status="PENDING")
    order = open_order(session)
    session.status = "CANCELLED"
    db.commit()

    reconciler.process_successful_payment(
        order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
    )

    db.refresh(session)
    assert session.status == "CANCELLED"
    assert session.payment_status == "PAID"
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("1000.00")


# ----------------------------------------------------------------- failure


def test_failed_payment_marks_pending_transactions(db, reconciler, open_order, sign_payment):
    order = open_order()

    assert reconciler.handle_failed_payment(order.order_id, "BAD_REQUEST_ERROR", "Card declined") == 1
    assert reconciler.handle_failed_payment(order.order_id, "BAD_REQUEST_ERROR") == 0

    transaction = db.query(PaymentTransaction).one()
    assert transaction.status == "FAILED"
    assert transaction.failure_reason == "Card declined"
    assert transaction.gateway_response["error_code"] == "BAD_REQUEST_ERROR"

    with pytest.raises(PaymentAlreadyProcessedException) as exc_info:
        reconciler.process_successful_payment(
            order.order_id, "pay_test_0001", sign_payment(order.order_id, "pay_test_0001")
        )
    assert exc_info.value.details["status"] == "FAILED"


def test_failure_for_unknown_order_is_a_noop(reconciler):
    assert reconciler.handle_failed_payment("order_unknown") == 0


# ------------------------------------------------------------------ refund


def test_full_refund_unwinds_ledger_and_returns_session(
    db, reconciler, paid_session, gateway_client, consultant, client_record
):
    transaction = reconciler.process_refund(
        "pay_test_0001", reason="Client request", consultant_id=consultant.id
    )

    assert transaction.status == "REFUNDED"
    assert transaction.refunded_amount == Decimal("1000.00")
    assert transaction.refunded_at is not None
    assert transaction.gateway_response["refund"]["status"] == "processed"

    refund_call = [c for c in gateway_client._calls if c["method"] == "refund"][0]
    assert refund_call["amount_minor"] == 100000
    assert refund_call["notes"]["reason"] == "Client request"

    db.refresh(paid_session)
    assert paid_session.status == "RETURNED"
    assert paid_session.payment_status == "REFUNDED"
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("0")
    refunded = _outbox(db, "payment.refunded")
    assert len(refunded) == 1
    assert refunded[0].payload["reason"] == "Client request"


def test_partial_refund_credits_back_only_the_refunded_amount(
    db, reconciler, paid_session, client_record
):
    transaction = reconciler.process_refund("pay_test_0001", amount=Decimal("400.00"))

    assert transaction.refunded_amount == Decimal("400.00")
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("600.00")
    assert _outbox(db, "payment.refunded")[0].payload["reason"] == "Requested by consultant"


def test_refund_above_payment_amount_is_rejected(reconciler, paid_session, gateway_client):
    with pytest.raises(ValidationException) as exc_info:
        reconciler.process_refund("pay_test_0001", amount=Decimal("1000.01"))

    assert exc_info.value.code == "REFUND_AMOUNT_EXCEEDED"
    assert "refund" not in [call["method"] for call in gateway_client._calls]


def test_refund_outside_window_is_rejected(db, reconciler, paid_session):
    db.execute(
        update(PaymentTransaction).values(processed_at=now_utc() - timedelta(days=181))
    )
    db.commit()
    db.expire_all()

    with pytest.raises(ValidationException) as exc_info:
        reconciler.process_refund("pay_test_0001")

    assert exc_info.value.code == "REFUND_WINDOW_EXPIRED"


def test_second_refund_is_already_processed(reconciler, paid_session):
    reconciler.process_refund("pay_test_0001")

    with pytest.raises(PaymentAlreadyProcessedException) as exc_info:
        reconciler.process_refund("pay_test_0001")

    assert exc_info.value.details["status"] == "REFUNDED"


def test_refund_scoped_to_owning_consultant(reconciler, paid_session):
    with pytest.raises(NotFoundException) as exc_info:
        reconciler.process_refund("pay_test_0001", consultant_id="01HYYYYYYYYYYYYYYYYYYYYYYY")
    assert exc_info.value.code == "PAYMENT_NOT_FOUND"


def test_gateway_refund_failure_leaves_payment_completed(db, reconciler, paid_session, gateway_client):
    gateway_client.set_error("refund", RazorpayError("Insufficient balance", status_code=400))

    with pytest.raises(ProviderException) as exc_info:
        reconciler.process_refund("pay_test_0001")

    assert exc_info.value.code == "REFUND_FAILED"
    assert db.query(PaymentTransaction).one().status == "COMPLETED"


def test_offline_payment_cannot_be_refunded(db, reconciler, booking_service, consultant, client_record):
    session = booking_service.create_session(
        consultant.id,
        SessionCreate(
            client_id=client_record.id,
            title="Walk-in consultation",
            amount=Decimal("1000.00"),
            payment_method="cash",
        ),
    )
    offline = db.query(PaymentTransaction).filter_by(session_id=session.id).one()
    offline.gateway_payment_id = "cash_receipt_17"
    db.commit()

    with pytest.raises(ValidationException) as exc_info:
        reconciler.process_refund("cash_receipt_17")

    assert exc_info.value.code == "PAYMENT_NOT_REFUNDABLE"


def test_refund_processed_webhook_records_gateway_refund(db, reconciler, paid_session, client_record):
    transaction = reconciler.mark_refund_processed(
        "pay_test_0001", {"id": "rfnd_1", "amount": 30000, "notes": {"reason": "Dispute"}}
    )

    assert transaction.status == "REFUNDED"
    assert transaction.refunded_amount == Decimal("300.00")
    db.refresh(client_record)
    assert client_record.total_amount_paid == Decimal("700.00")
    assert _outbox(db, "payment.refunded")[0].payload["reason"] == "Dispute"

    with pytest.raises(PaymentAlreadyProcessedException):
        reconciler.mark_refund_processed("pay_test_0001", {"id": "rfnd_1", "amount": 30000})


def test_refund_processed_for_unknown_payment(reconciler):
    with pytest.raises(NotFoundException):
        reconciler.mark_refund_processed("pay_unknown", {"amount": 100})
