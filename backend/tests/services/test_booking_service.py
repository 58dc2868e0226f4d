from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from pydantic import ValidationError as PydanticValidationError
import pytest

from consultdesk.core.config import settings
from consultdesk.core.exceptions import (
    NotFoundException,
    ProviderException,
    SlotConflictException,
    ValidationException,
)
from consultdesk.core.timezone_utils import local_now
from consultdesk.integrations import FakeMeetingProvider, MeetingErrorKind, MeetingProviderError
from consultdesk.models.availability import AvailabilitySlot
from consultdesk.models.client import Client
from consultdesk.models.event_outbox import EventOutbox
from consultdesk.models.payment import PaymentTransaction
from consultdesk.models.session import ConsultationSession
from consultdesk.schemas.booking import PublicBookingRequest, SessionCreate, SessionUpdate


def _public_request(scheduled_date, **overrides) -> PublicBookingRequest:
    values = dict(
        consultant_slug="asha-rao",
        full_name="Priya Sharma",
        email="Priya.Sharma@example.com",
        phone_number="+919800000000",
        session_type="PERSONAL",
        scheduled_date=scheduled_date,
        scheduled_time="10:00",
        amount=Decimal("1000.00"),
        client_notes="Career planning",
    )
    values.update(overrides)
    return PublicBookingRequest(**values)


def _outbox_kinds(db) -> list[str]:
    return [row.event_type for row in db.query(EventOutbox).order_by(EventOutbox.id).all()]


# ---------------------------------------------------------------- public path


def test_book_session_creates_client_session_and_meeting(db, booking_service, make_slot, future_date):
    slot = make_slot(future_date)

    result = booking_service.book_session(_public_request(future_date))

    session = result.session
    assert session.status == "PENDING"
    assert session.payment_status == "PENDING"
    assert session.booking_source == "public_booking"
    assert session.title == "1-on-1 Session with Priya"
    assert session.meeting_link is not None
    assert result.meeting_deferred is False

    client = result.client
    assert client.email == "priya.sharma@example.com"
    assert client.first_name == "Priya"
    assert client.last_name == "Sharma"
    assert client.total_sessions == 1
    assert client.total_amount_paid == Decimal("0")

    db.refresh(slot)
    assert slot.is_booked is True
    assert slot.session_id == session.id
    assert _outbox_kinds(db) == ["session.booked"]


def test_book_session_reuses_existing_client_by_email(db, booking_service, make_slot, future_date):
    make_slot(future_date, "10:00")
    make_slot(future_date, "12:00", "13:00")

    first = booking_service.book_session(_public_request(future_date))
    second = booking_service.book_session(
        _public_request(future_date, scheduled_time="12:00", email="priya.sharma@EXAMPLE.com")
    )

    assert first.client.id == second.client.id
    assert db.query(Client).count() == 1
    db.refresh(second.client)
    assert second.client.total_sessions == 2


def test_second_booking_for_taken_slot_is_rejected(booking_service, make_slot, future_date):
    make_slot(future_date)
    booking_service.book_session(_public_request(future_date))

    with pytest.raises(ValidationException) as exc_info:
        booking_service.book_session(_public_request(future_date, email="other@example.com"))

    assert exc_info.value.code == "SLOT_UNAVAILABLE"


def test_active_session_in_slot_raises_slot_conflict(db, booking_service, make_slot, future_date):
    make_slot(future_date)
    make_slot(future_date, session_type="WEBINAR")
    booking_service.book_session(_public_request(future_date))

    with pytest.raises(SlotConflictException) as exc_info:
        booking_service.book_session(
            _public_request(
                future_date,
                email="other@example.com",
                session_type="WEBINAR",
                amount=Decimal("500.00"),
            )
        )

    assert exc_info.value.code == "SLOT_CONFLICT"
    assert exc_info.value.details["conflicting_session_id"]
    assert db.query(ConsultationSession).count() == 1


def test_unique_index_race_is_translated_to_slot_conflict(
    db, booking_service, make_slot, make_session, meeting_providers, future_date
):
    make_session(future_date, "10:00", status="PENDING")
    slot = make_slot(future_date)

    # Simulate a concurrent insert that the conflict query did not see
    with patch.object(booking_service.session_repository, "find_active_in_slot", return_value=None):
        with pytest.raises(SlotConflictException):
            booking_service.book_session(_public_request(future_date))

    assert db.query(Client).filter_by(email="priya.sharma@example.com").count() == 0
    assert db.query(ConsultationSession).count() == 1
    db.refresh(slot)
    assert slot.is_booked is False
    # The meeting created for the losing booking is cancelled again
    calls = [call["method"] for call in meeting_providers["MEET"]._calls]
    assert calls == ["create_meeting", "cancel_meeting"]


def test_book_session_in_the_past_is_rejected(booking_service, make_slot):
    yesterday = local_now().date() - timedelta(days=1)
    make_slot(yesterday)

    with pytest.raises(ValidationException) as exc_info:
        booking_service.book_session(_public_request(yesterday))

    assert exc_info.value.code == "PAST_TIME"


def test_taken_slot_is_rejected_before_calling_the_provider(
    booking_service, make_slot, meeting_providers, future_date
):
    make_slot(future_date)
    booking_service.book_session(_public_request(future_date))

    with pytest.raises(ValidationException):
        booking_service.book_session(_public_request(future_date, email="other@example.com"))

    calls = [call["method"] for call in meeting_providers["MEET"]._calls]
    assert calls == ["create_meeting"]


def test_meeting_provider_is_called_outside_a_transaction(
    db, booking_service, make_slot, meeting_providers, future_date
):
    make_slot(future_date)
    provider = meeting_providers["MEET"]
    seen_in_transaction = []

    def _create_meeting(details, credential=None):
        seen_in_transaction.append(db.in_transaction())
        return FakeMeetingProvider.create_meeting(provider, details, credential)

    with patch.object(provider, "create_meeting", side_effect=_create_meeting):
        result = booking_service.book_session(_public_request(future_date))

    assert seen_in_transaction == [False]
    assert result.session.meeting_link is not None


def test_book_unscheduled_public_session(db, booking_service, meeting_providers, consultant):
    result = booking_service.book_session(
        _public_request(None, scheduled_time=None, client_notes="Call me to pick a time")
    )

    session = result.session
    assert session.scheduled_date is None
    assert session.scheduled_time is None
    assert session.status == "PENDING"
    assert session.meeting_link is None
    assert result.meeting_deferred is False
    assert meeting_providers["MEET"]._calls == []
    assert db.query(AvailabilitySlot).filter_by(session_id=session.id).count() == 0
    db.refresh(result.client)
    assert result.client.total_sessions == 1
    assert _outbox_kinds(db) == ["session.booked"]


def test_public_booking_needs_date_and_time_together(future_date):
    with pytest.raises(PydanticValidationError):
        _public_request(future_date, scheduled_time=None)
    with pytest.raises(PydanticValidationError):
        _public_request(None)


def test_book_session_unknown_or_unapproved_consultant(db, booking_service, consultant, future_date):
    with pytest.raises(NotFoundException) as exc_info:
        booking_service.book_session(_public_request(future_date, consultant_slug="nobody"))
    assert exc_info.value.code == "CONSULTANT_NOT_FOUND"

    consultant.is_approved_by_admin = False
    db.commit()
    with pytest.raises(NotFoundException):
        booking_service.book_session(_public_request(future_date))


def test_book_session_defers_meeting_without_credentials(db, booking_service, consultant, make_slot, future_date):
    consultant.google_access_token = None
    db.commit()
    make_slot(future_date)

    result = booking_service.book_session(_public_request(future_date))

    assert result.meeting_deferred is True
    assert result.session.meeting_link is None
    assert result.session.needs_meeting_link is True


def test_book_session_defers_meeting_with_expired_token(db, booking_service, consultant, make_slot, future_date):
    consultant.google_token_expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
    db.commit()
    make_slot(future_date)

    result = booking_service.book_session(_public_request(future_date))

    assert result.meeting_deferred is True
    assert result.session.meeting_link is None


def test_public_price_mismatch_is_soft_by_default(booking_service, make_slot, future_date):
    make_slot(future_date)

    result = booking_service.book_session(_public_request(future_date, amount=Decimal("900.00")))

    assert result.session.amount == Decimal("900.00")


def test_public_price_mismatch_can_be_enforced(monkeypatch, booking_service, make_slot, future_date):
    monkeypatch.setattr(settings, "public_booking_enforce_price", True)
    make_slot(future_date)

    with pytest.raises(ValidationException) as exc_info:
        booking_service.book_session(_public_request(future_date, amount=Decimal("900.00")))

    assert exc_info.value.code == "PRICE_MISMATCH"
    assert exc_info.value.details["expected"] == "1000.00"


def test_price_within_tolerance_is_accepted(monkeypatch, booking_service, make_slot, future_date):
    monkeypatch.setattr(settings, "public_booking_enforce_price", True)
    make_slot(future_date)

    result = booking_service.book_session(_public_request(future_date, amount=Decimal("999.99")))

    assert result.session.id


# ----------------------------------------------------------- consultant path


def _session_create(client_id: str, scheduled_date=None, **overrides) -> SessionCreate:
    values = dict(
        client_id=client_id,
        title="Strategy review",
        scheduled_date=scheduled_date,
        scheduled_time="11:00" if scheduled_date else None,
        amount=Decimal("1000.00"),
    )
    values.update(overrides)
    return SessionCreate(**values)


def test_create_session_online_stays_pending(db, booking_service, consultant, client_record, future_date):
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )

    assert session.status == "PENDING"
    assert session.payment_status == "PENDING"
    assert session.booking_source == "manually_added"
    assert session.meeting_link is not None
    assert db.query(PaymentTransaction).count() == 0
    db.refresh(client_record)
    assert client_record.total_sessions == 1
    assert client_record.total_amount_paid == Decimal("0")


def test_create_session_claims_matching_slot(db, booking_service, consultant, client_record, make_slot, future_date):
    slot = make_slot(future_date, "11:00", "12:00")

    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )

    db.refresh(slot)
    assert slot.is_booked is True
    assert slot.session_id == session.id


def test_create_session_paid_offline_records_completed_transaction(
    db, booking_service, consultant, client_record, future_date
):
    session = booking_service.create_session(
        consultant.id,
        _session_create(client_record.id, future_date, payment_method="cash"),
    )

    assert session.status == "CONFIRMED"
    assert session.payment_status == "PAID"
    transactions = db.query(PaymentTransaction).filter_by(session_id=session.id).all()
    assert len(transactions) == 1
    offline = transactions[0]
    assert offline.status == "COMPLETED"
    assert offline.transaction_type == "offline"
    assert offline.gateway_order_id.startswith("offline_")
    assert offline.amount == Decimal("1000.00")
    db.refresh(client_record)
    assert client_record.total_sessions == 1
    assert client_record.total_amount_paid == Decimal("1000.00")


def test_create_unscheduled_session_skips_meeting(db, booking_service, consultant, client_record, meeting_providers):
    session = booking_service.create_session(consultant.id, _session_create(client_record.id))

    assert session.scheduled_date is None
    assert session.meeting_link is None
    assert meeting_providers["MEET"]._calls == []


def test_create_session_without_teams_token_fails(db, booking_service, consultant, client_record, future_date):
    consultant.teams_access_token = None
    db.commit()

    with pytest.raises(ValidationException) as exc_info:
        booking_service.create_session(
            consultant.id, _session_create(client_record.id, future_date, platform="TEAMS")
        )

    assert exc_info.value.code == "MEETING_CREDENTIAL_MISSING"
    assert exc_info.value.details["platform"] == "TEAMS"
    assert db.query(ConsultationSession).count() == 0


def test_create_session_with_expired_google_token_fails(db, booking_service, consultant, client_record, future_date):
    consultant.google_token_expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db.commit()

    with pytest.raises(ValidationException) as exc_info:
        booking_service.create_session(consultant.id, _session_create(client_record.id, future_date))

    assert exc_info.value.code == "MEETING_CREDENTIAL_EXPIRED"


def test_create_session_provider_outage_rolls_back(
    db, booking_service, consultant, client_record, meeting_providers, future_date
):
    meeting_providers["MEET"].set_error(
        "create_meeting",
        MeetingProviderError(MeetingErrorKind.PROVIDER_UNAVAILABLE, "Google API error 503", 503),
    )

    with pytest.raises(ProviderException) as exc_info:
        booking_service.create_session(consultant.id, _session_create(client_record.id, future_date))

    assert exc_info.value.code == "MEETING_PROVIDER_UNAVAILABLE"
    assert exc_info.value.status_code == 502
    assert db.query(ConsultationSession).count() == 0
    db.refresh(client_record)
    assert client_record.total_sessions == 0


def test_create_session_zoom_uses_account_credentials(db, booking_service, consultant, client_record, future_date):
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date, platform="ZOOM")
    )

    assert session.platform == "ZOOM"
    assert session.meeting_password == "123456"


def test_create_session_price_mismatch_is_strict(booking_service, consultant, client_record, future_date):
    with pytest.raises(ValidationException) as exc_info:
        booking_service.create_session(
            consultant.id,
            _session_create(client_record.id, future_date, amount=Decimal("750.00")),
        )
    assert exc_info.value.code == "PRICE_MISMATCH"


def test_create_session_conflicts_with_existing_session(
    booking_service, consultant, client_record, make_session, future_date
):
    make_session(future_date, "11:00")

    with pytest.raises(SlotConflictException):
        booking_service.create_session(consultant.id, _session_create(client_record.id, future_date))


def test_create_session_for_unknown_client(booking_service, consultant, future_date):
    with pytest.raises(NotFoundException) as exc_info:
        booking_service.create_session(consultant.id, _session_create("01HZZZZZZZZZZZZZZZZZZZZZZZ"))
    assert exc_info.value.code == "CLIENT_NOT_FOUND"


# ------------------------------------------------------------------- cancel


def test_cancel_session_frees_slot_and_records_reason(
    db, booking_service, consultant, make_slot, meeting_providers, future_date
):
    slot = make_slot(future_date)
    booked = booking_service.book_session(_public_request(future_date)).session

    cancelled = booking_service.cancel_session(consultant.id, booked.id, reason="Client unwell")

    assert cancelled.status == "CANCELLED"
    assert cancelled.cancelled_at is not None
    assert "Cancelled by consultant on" in cancelled.consultant_notes
    assert cancelled.consultant_notes.endswith(": Client unwell")
    db.refresh(slot)
    assert slot.is_booked is False
    assert slot.session_id is None
    assert "cancel_meeting" in [call["method"] for call in meeting_providers["MEET"]._calls]
    assert "session.cancelled" in _outbox_kinds(db)


def test_cancelled_slot_can_be_booked_again(db, booking_service, consultant, make_slot, future_date):
    make_slot(future_date)
    first = booking_service.book_session(_public_request(future_date)).session
    booking_service.cancel_session(consultant.id, first.id)

    second = booking_service.book_session(_public_request(future_date, email="next@example.com"))

    assert second.session.id != first.id
    assert db.query(AvailabilitySlot).filter_by(session_id=second.session.id).count() == 1


def test_cancel_session_only_from_pending_or_confirmed(booking_service, consultant, make_session, future_date):
    done = make_session(future_date, status="COMPLETED")

    with pytest.raises(ValidationException) as exc_info:
        booking_service.cancel_session(consultant.id, done.id)

    assert exc_info.value.code == "SESSION_NOT_CANCELLABLE"


def test_cancel_session_twice_is_rejected(booking_service, consultant, make_session, future_date):
    session = make_session(future_date)
    booking_service.cancel_session(consultant.id, session.id)

    with pytest.raises(ValidationException) as exc_info:
        booking_service.cancel_session(consultant.id, session.id)

    assert exc_info.value.code == "SESSION_NOT_CANCELLABLE"


def test_cancel_session_of_another_consultant(booking_service, make_session, future_date):
    session = make_session(future_date)

    with pytest.raises(NotFoundException) as exc_info:
        booking_service.cancel_session("01HYYYYYYYYYYYYYYYYYYYYYYY", session.id)

    assert exc_info.value.code == "SESSION_NOT_FOUND"


# --------------------------------------------------------------- reschedule


def test_reschedule_moves_slot_and_updates_meeting_in_place(
    db, booking_service, consultant, client_record, make_slot, meeting_providers, future_date
):
    old_slot = make_slot(future_date, "11:00", "12:00")
    new_slot = make_slot(future_date, "14:00", "15:00")
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )
    meeting_id = session.meeting_id

    updated = booking_service.reschedule_session(
        consultant.id, session.id, SessionUpdate(scheduled_time="14:00")
    )

    assert updated.scheduled_time == "14:00"
    assert updated.meeting_id == meeting_id
    calls = [call["method"] for call in meeting_providers["MEET"]._calls]
    assert calls == ["create_meeting", "update_meeting"]
    db.refresh(old_slot)
    db.refresh(new_slot)
    assert old_slot.is_booked is False
    assert new_slot.session_id == session.id
    assert "session.updated" in _outbox_kinds(db)


def test_reschedule_to_new_platform_replaces_meeting(
    booking_service, consultant, client_record, meeting_providers, future_date
):
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )
    old_meeting_id = session.meeting_id

    updated = booking_service.reschedule_session(
        consultant.id, session.id, SessionUpdate(platform="TEAMS")
    )

    assert updated.platform == "TEAMS"
    assert updated.meeting_id != old_meeting_id
    assert [c["method"] for c in meeting_providers["TEAMS"]._calls] == ["create_meeting"]
    assert meeting_providers["MEET"]._calls[-1] == {
        "method": "cancel_meeting",
        "meeting_id": old_meeting_id,
    }


def test_reschedule_into_taken_slot_is_rejected(
    db, booking_service, consultant, client_record, make_session, future_date
):
    make_session(future_date, "15:00")
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )

    with pytest.raises(SlotConflictException):
        booking_service.reschedule_session(
            consultant.id, session.id, SessionUpdate(scheduled_time="15:00")
        )

    db.refresh(session)
    assert session.scheduled_time == "11:00"


def test_failed_reschedule_moves_the_meeting_back(
    db, booking_service, consultant, client_record, meeting_providers, future_date
):
    session = booking_service.create_session(
        consultant.id, _session_create(client_record.id, future_date)
    )
    original_start = session.starts_at

    with patch.object(booking_service.session_repository, "transition", return_value=False):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.reschedule_session(
                consultant.id, session.id, SessionUpdate(scheduled_time="16:00")
            )

    assert exc_info.value.code == "SESSION_NOT_RESCHEDULABLE"
    calls = meeting_providers["MEET"]._calls
    assert [call["method"] for call in calls] == ["create_meeting", "update_meeting", "update_meeting"]
    assert calls[1]["details"].start_time != original_start
    assert calls[2]["details"].start_time == original_start
    db.refresh(session)
    assert session.scheduled_time == "11:00"


def test_reschedule_cancelled_session_is_rejected(booking_service, consultant, make_session, future_date):
    session = make_session(future_date, status="CANCELLED")

    with pytest.raises(ValidationException) as exc_info:
        booking_service.reschedule_session(consultant.id, session.id, SessionUpdate(title="New title"))

    assert exc_info.value.code == "SESSION_NOT_RESCHEDULABLE"


def test_reschedule_requires_date_and_time_together(booking_service, consultant, client_record, future_date):
    session = booking_service.create_session(consultant.id, _session_create(client_record.id))

    with pytest.raises(ValidationException) as exc_info:
        booking_service.reschedule_session(
            consultant.id, session.id, SessionUpdate(scheduled_date=future_date)
        )

    assert exc_info.value.code == "INVALID_SCHEDULE"


def test_measured_operations_are_tracked_per_service(booking_service, make_slot, future_date):
    before = booking_service.get_metrics().get("book_session", {"count": 0, "failure_count": 0})
    make_slot(future_date)

    booking_service.book_session(_public_request(future_date))
    with pytest.raises(NotFoundException):
        booking_service.book_session(_public_request(future_date, consultant_slug="nobody"))

    after = booking_service.get_metrics()["book_session"]
    assert after["count"] == before["count"] + 2
    assert after["failure_count"] == before["failure_count"] + 1
    assert 0 < after["success_rate"] < 1
