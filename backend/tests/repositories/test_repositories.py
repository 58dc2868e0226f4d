from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from consultdesk.core.enums import CANCELLABLE_SESSION_STATUSES
from consultdesk.core.exceptions import RepositoryException
from consultdesk.models.event_outbox import EventOutbox
from consultdesk.models.payment import PaymentTransaction
from consultdesk.models.webhook_event import WebhookEvent
from consultdesk.repositories.factory import RepositoryFactory


def test_session_transition_is_guarded_by_current_status(db, make_session, future_date):
    repo = RepositoryFactory.create_session_repository(db)
    session = make_session(future_date, status="CONFIRMED")

    assert repo.transition(session.id, from_statuses=["PENDING"], status="CANCELLED") is False
    assert session.status == "CONFIRMED"

    assert repo.transition(session.id, from_statuses=CANCELLABLE_SESSION_STATUSES, status="CANCELLED") is True
    # Identity map is refreshed after the guarded update
    assert session.status == "CANCELLED"
    assert repo.transition(session.id, from_statuses=CANCELLABLE_SESSION_STATUSES, status="CONFIRMED") is False


def test_active_slot_lookup_ignores_cancelled_sessions(db, make_session, consultant, future_date):
    repo = RepositoryFactory.create_session_repository(db)
    cancelled = make_session(future_date, "09:00", status="CANCELLED")
    active = make_session(future_date, "10:00", status="PENDING")

    assert repo.find_active_in_slot(consultant.id, future_date, "09:00") is None
    assert repo.find_active_in_slot(consultant.id, future_date, "10:00").id == active.id
    assert repo.find_active_in_slot(
        consultant.id, future_date, "10:00", exclude_session_id=active.id
    ) is None
    assert cancelled.id != active.id


def test_active_slot_index_rejects_second_active_session(db, make_session, future_date):
    make_session(future_date, "10:00", status="CANCELLED")
    make_session(future_date, "10:00", status="CONFIRMED")

    with pytest.raises(IntegrityError):
        make_session(future_date, "10:00", status="PENDING")
    db.rollback()


def test_ledger_delta_is_applied_in_sql(db, client_record):
    repo = RepositoryFactory.create_client_repository(db)

    assert repo.apply_ledger_delta(client_record.id, sessions=2, amount=Decimal("150.50")) is True
    assert repo.apply_ledger_delta(client_record.id, amount=Decimal("-50.50")) is True
    db.commit()

    assert client_record.total_sessions == 2
    assert client_record.total_amount_paid == Decimal("100.00")
    assert repo.apply_ledger_delta(client_record.id) is False
    assert repo.apply_ledger_delta("01HNOBODY00000000000000000", sessions=1) is False


def test_create_wraps_integrity_errors(db, consultant, client_record):
    repo = RepositoryFactory.create_client_repository(db)

    with pytest.raises(RepositoryException) as exc_info:
        repo.create(
            consultant_id=consultant.id,
            email=client_record.email,
            name="Duplicate Client",
        )

    assert isinstance(exc_info.value.__cause__, IntegrityError)
    db.rollback()


def test_slot_claim_is_first_come_first_served(db, make_slot, make_session, future_date):
    repo = RepositoryFactory.create_availability_repository(db)
    slot = make_slot(future_date)
    first = make_session(future_date, "10:00")
    second = make_session(future_date, "11:00")

    assert repo.claim(slot.id, first.id) is True
    assert repo.claim(slot.id, second.id) is False
    assert slot.session_id == first.id

    assert repo.release_for_session(first.id) == 1
    assert slot.is_booked is False
    assert repo.find_open_slot(slot.consultant_id, "PERSONAL", future_date, "10:00").id == slot.id


def test_payment_completion_happens_once(db, consultant):
    repo = RepositoryFactory.create_payment_repository(db)
    transaction = repo.create(
        consultant_id=consultant.id,
        amount=Decimal("1000.00"),
        currency="INR",
        gateway_order_id="order_repo_test",
        status="PENDING",
    )
    now = datetime.now(timezone.utc)
    values = dict(
        gateway_payment_id="pay_repo_test",
        gateway_signature=None,
        gateway_response={"payment": {"status": "captured"}},
        processed_at=now,
    )

    assert repo.complete_pending(transaction.id, **values) is True
    assert repo.complete_pending(transaction.id, **values) is False
    assert repo.fail_pending_by_order("order_repo_test", failure_reason="x", gateway_response=None, processed_at=now) == 0
    assert repo.get_completed_by_payment_id("pay_repo_test").id == transaction.id
    assert repo.get_pending_by_order_id("order_repo_test") is None

    assert repo.mark_refunded(transaction.id, refunded_amount=Decimal("1000.00"), refunded_at=now) is True
    assert repo.mark_refunded(transaction.id, refunded_amount=Decimal("1000.00"), refunded_at=now) is False
    assert transaction.status == "REFUNDED"


def test_payment_requires_single_target(db, consultant, make_session, future_date):
    session = make_session(future_date)
    db.add(
        PaymentTransaction(
            consultant_id=consultant.id,
            session_id=session.id,
            quotation_id="01HQUOTATION00000000000000",
            amount=Decimal("10.00"),
            gateway_order_id="order_both",
        )
    )

    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_outbox_enqueue_is_idempotent_per_key(db):
    repo = RepositoryFactory.create_event_outbox_repository(db)

    first = repo.enqueue("session.booked", "01HSESSION0000000000000000", {"a": 1})
    second = repo.enqueue("session.booked", "01HSESSION0000000000000000", {"a": 2})
    other = repo.enqueue(
        "session.updated", "01HSESSION0000000000000000", {}, idempotency_key="session.updated:1"
    )
    db.commit()

    assert first.id == second.id
    assert first.idempotency_key == "session.booked:01HSESSION0000000000000000"
    assert first.payload == {"a": 1}
    assert other.id != first.id
    assert db.query(EventOutbox).count() == 2


def test_webhook_claim_takes_received_or_failed_rows(db):
    repo = RepositoryFactory.create_webhook_event_repository(db)
    now = datetime.now(timezone.utc)
    fresh = WebhookEvent(
        source="razorpay", event_type="payment.captured", event_id="evt_a", payload={}, received_at=now
    )
    done = WebhookEvent(
        source="razorpay",
        event_type="payment.captured",
        event_id="evt_b",
        payload={},
        status="processed",
        received_at=now,
    )
    old = WebhookEvent(
        source="razorpay",
        event_type="payment.failed",
        event_id="evt_c",
        payload={},
        status="failed",
        received_at=now - timedelta(days=3),
    )
    db.add_all([fresh, done, old])
    db.commit()

    assert repo.claim_for_processing(fresh.id) is True
    assert repo.claim_for_processing(fresh.id) is False
    assert repo.claim_for_processing(done.id) is False
    assert repo.claim_for_processing(old.id) is True
    db.commit()

    assert [db.get(WebhookEvent, e.id).status for e in (fresh, done, old)] == [
        "processing",
        "processed",
        "processing",
    ]
