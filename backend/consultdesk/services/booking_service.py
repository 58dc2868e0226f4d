# backend/consultdesk/services/booking_service.py
"""
Booking Coordinator.

Creates, reschedules and cancels consultation sessions. Each write runs as one
unit of work: conflict check, client lookup-or-create, session insert,
availability hold, client ledger and outbox notification commit or roll back
together. Meeting providers are called before that transaction opens; a
meeting created for a write that then rolls back is cancelled again.

Double booking is prevented twice: the in-transaction conflict query, and the
partial unique index on active slots for the check/insert race. Both surface
as ``SlotConflictException``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.enums import (
    CANCELLABLE_SESSION_STATUSES,
    BookingSource,
    PaymentMethod,
    SessionPaymentStatus,
    SessionStatus,
    SessionType,
    TransactionStatus,
    TransactionType,
)
from ..core.exceptions import (
    NotFoundException,
    RepositoryException,
    ServiceException,
    SlotConflictException,
    ValidationException,
)
from ..core.timezone_utils import now_utc, session_start_utc
from ..events.notification_events import SessionBooked, SessionCancelled, SessionUpdated
from ..events.publisher import NotificationPublisher
from ..integrations.meeting_providers import MeetingLink, MeetingProviderError
from ..models.availability import AvailabilitySlot
from ..models.client import Client
from ..models.consultant import Consultant
from ..models.session import ACTIVE_SLOT_INDEX_NAME, ConsultationSession
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import PublicBookingRequest, SessionCreate, SessionUpdate
from .base import BaseService
from .cache_service import CacheService
from .meeting_service import MeetingService

logger = logging.getLogger(__name__)

# Fields a reschedule may change; None means "leave as is".
_RESCHEDULABLE_FIELDS = (
    "title",
    "description",
    "scheduled_date",
    "scheduled_time",
    "duration_minutes",
    "platform",
    "notes",
)

# Session columns the meeting providers read
_MEETING_DETAIL_FIELDS = (
    "title",
    "description",
    "scheduled_date",
    "scheduled_time",
    "duration_minutes",
    "timezone",
    "platform",
    "meeting_id",
    "meeting_link",
)


@dataclass
class BookingResult:
    client: Client
    session: ConsultationSession
    meeting_deferred: bool = False


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def is_active_slot_violation(exc: BaseException) -> bool:
    """True when ``exc`` (or its cause chain) is the active-slot unique index firing."""
    current: Optional[BaseException] = exc
    while current is not None:
        orig = getattr(current, "orig", None)
        diag = getattr(orig, "diag", None)
        if diag is not None and getattr(diag, "constraint_name", None) == ACTIVE_SLOT_INDEX_NAME:
            return True
        text = str(orig if orig is not None else current)
        if ACTIVE_SLOT_INDEX_NAME in text:
            return True
        # SQLite names the columns instead of the index
        if "UNIQUE constraint failed" in text and "sessions.scheduled_date" in text:
            return True
        current = current.__cause__ or current.__context__
    return False


class BookingService(BaseService):
    """Coordinates session creation, rescheduling and cancellation."""

    def __init__(
        self,
        db: Session,
        meeting_service: MeetingService,
        cache: Optional[CacheService] = None,
        publisher: Optional[NotificationPublisher] = None,
    ):
        super().__init__(db, cache)
        self.meeting_service = meeting_service
        self.consultant_repository = RepositoryFactory.create_consultant_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.publisher = publisher or NotificationPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # ------------------------------------------------------------------ public path

    @BaseService.measure_operation("book_session")
    def book_session(self, request: PublicBookingRequest) -> BookingResult:
        """
        Book a session from the consultant's public page.

        Missing or expired meeting credentials do not block the booking; the
        session is stored without a link and the link is provisioned once the
        payment completes. A request without a date and time records an
        unscheduled session: no slot is held and no meeting is created.
        """
        self.log_operation(
            "book_session",
            consultant_slug=request.consultant_slug,
            scheduled_date=_iso(request.scheduled_date),
            scheduled_time=request.scheduled_time,
        )
        consultant = self.consultant_repository.get_bookable_by_slug(request.consultant_slug)
        if consultant is None:
            raise NotFoundException(
                "Consultant not found or not available for booking",
                code="CONSULTANT_NOT_FOUND",
            )

        session_type = _enum_value(request.session_type)
        self._check_price(
            consultant,
            session_type,
            request.amount,
            strict=settings.public_booking_enforce_price,
        )
        tz_name = settings.booking_timezone
        scheduled_date = request.scheduled_date
        scheduled_time = request.scheduled_time
        scheduled = scheduled_date is not None and scheduled_time is not None
        if scheduled:
            self._ensure_future(scheduled_date, scheduled_time, tz_name)

        first_name = request.full_name.split(" ", 1)[0]
        if session_type == SessionType.WEBINAR.value:
            title = f"Webinar Session with {first_name}"
        else:
            title = f"1-on-1 Session with {first_name}"

        values: Dict[str, Any] = dict(
            consultant_id=consultant.id,
            title=title,
            description=request.client_notes,
            session_type=session_type,
            status=SessionStatus.PENDING.value,
            payment_status=SessionPaymentStatus.PENDING.value,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            duration_minutes=request.duration_minutes,
            timezone=tz_name,
            amount=request.amount,
            currency=request.currency.upper(),
            payment_method=PaymentMethod.ONLINE.value,
            platform=_enum_value(request.platform),
            booking_source=BookingSource.PUBLIC_BOOKING.value,
            client_notes=request.client_notes,
        )
        email = str(request.email).strip().lower()

        meeting: Optional[MeetingLink] = None
        if scheduled:
            # Checked again under the transaction; this avoids a provider call for a taken slot
            self._require_open_slot(consultant.id, session_type, scheduled_date, scheduled_time)
            self._ensure_slot_free(consultant.id, scheduled_date, scheduled_time)
            meeting = self._create_meeting(
                ConsultationSession(**values),
                consultant,
                Client(email=email, name=request.full_name),
                strict=False,
            )

        try:
            with self.transaction():
                slot = None
                if scheduled:
                    slot = self._require_open_slot(
                        consultant.id, session_type, scheduled_date, scheduled_time
                    )
                    self._ensure_slot_free(consultant.id, scheduled_date, scheduled_time)

                client = self._find_or_create_client(
                    consultant.id, request.full_name, email, request.phone_number
                )
                session = self.session_repository.create(
                    client_id=client.id, **values, **self._meeting_fields(meeting)
                )
                if slot is not None and not self.availability_repository.claim(slot.id, session.id):
                    raise SlotConflictException(details=self._slot_details(session))
                self.client_repository.apply_ledger_delta(client.id, sessions=1)
                self._publish_booked(session, consultant, client)
        except Exception as exc:
            self._discard_meeting(values["platform"], meeting, consultant)
            if scheduled and isinstance(exc, (RepositoryException, ServiceException)):
                self._raise_if_slot_conflict(exc, scheduled_date, scheduled_time)
            raise

        meeting_deferred = scheduled and meeting is None
        self.logger.info(
            "Booked session %s for client %s with consultant %s (meeting %s)",
            session.id,
            client.id,
            consultant.id,
            "deferred" if meeting_deferred else ("ready" if scheduled else "not scheduled"),
        )
        self._invalidate_booking_caches(consultant)
        return BookingResult(client=client, session=session, meeting_deferred=meeting_deferred)

    # ------------------------------------------------------------ consultant path

    @BaseService.measure_operation("create_session")
    def create_session(self, consultant_id: str, data: SessionCreate) -> ConsultationSession:
        """Create a session for an existing client of the consultant."""
        self.log_operation("create_session", consultant_id=consultant_id, client_id=data.client_id)
        consultant = self._get_consultant(consultant_id)
        client = self.client_repository.get_for_consultant(data.client_id, consultant_id)
        if client is None:
            raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND")

        session_type = _enum_value(data.session_type)
        platform = _enum_value(data.platform)
        self._check_price(consultant, session_type, data.amount, strict=True)

        scheduled = data.scheduled_date is not None and data.scheduled_time is not None
        tz_name = settings.booking_timezone
        if scheduled:
            self._ensure_future(data.scheduled_date, data.scheduled_time, tz_name)
            self._require_meeting_credential(consultant, platform)

        payment_method = _enum_value(data.payment_method)
        offline = payment_method != PaymentMethod.ONLINE.value
        paid_offline = offline and data.amount > 0

        values: Dict[str, Any] = dict(
            consultant_id=consultant.id,
            client_id=client.id,
            title=data.title,
            description=data.description,
            session_type=session_type,
            status=SessionStatus.CONFIRMED.value if offline else SessionStatus.PENDING.value,
            payment_status=(
                SessionPaymentStatus.PAID.value if paid_offline else SessionPaymentStatus.PENDING.value
            ),
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time,
            duration_minutes=data.duration_minutes,
            timezone=tz_name,
            amount=data.amount,
            currency=data.currency.upper(),
            payment_method=payment_method,
            platform=platform,
            booking_source=BookingSource.MANUALLY_ADDED.value,
            notes=data.notes,
        )

        meeting: Optional[MeetingLink] = None
        if scheduled:
            self._ensure_slot_free(consultant.id, data.scheduled_date, data.scheduled_time)
            meeting = self._create_meeting(
                ConsultationSession(**values), consultant, client, strict=True
            )

        try:
            with self.transaction():
                if scheduled:
                    self._ensure_slot_free(consultant.id, data.scheduled_date, data.scheduled_time)

                session = self.session_repository.create(**values, **self._meeting_fields(meeting))
                if scheduled:
                    self.availability_repository.claim_matching(
                        consultant.id,
                        session_type,
                        data.scheduled_date,
                        data.scheduled_time,
                        session.id,
                    )
                if paid_offline:
                    self._record_offline_payment(session, client)
                self.client_repository.apply_ledger_delta(
                    client.id,
                    sessions=1,
                    amount=data.amount if paid_offline else Decimal("0"),
                )
                self._publish_booked(session, consultant, client)
        except Exception as exc:
            self._discard_meeting(platform, meeting, consultant)
            if scheduled and isinstance(exc, (RepositoryException, ServiceException)):
                self._raise_if_slot_conflict(exc, data.scheduled_date, data.scheduled_time)
            raise

        self._invalidate_booking_caches(consultant)
        return session

    @BaseService.measure_operation("reschedule_session")
    def reschedule_session(
        self, consultant_id: str, session_id: str, data: SessionUpdate
    ) -> ConsultationSession:
        """
        Edit or move a PENDING / CONFIRMED session.

        A new time window updates the provider meeting in place when possible,
        otherwise a fresh meeting is created and the old one cancelled.
        """
        session = self._get_session(consultant_id, session_id)
        if not session.is_cancellable:
            raise ValidationException(
                f"Cannot reschedule a session with status {session.status}",
                code="SESSION_NOT_RESCHEDULABLE",
            )
        consultant = self._get_consultant(consultant_id, require_bookable=False)
        client = self.client_repository.get_by_id(session.client_id)
        if client is None:
            raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND")

        changes: Dict[str, Any] = {
            key: _enum_value(value)
            for key, value in data.model_dump(exclude_unset=True).items()
            if key in _RESCHEDULABLE_FIELDS and value is not None
        }
        new_date: Optional[date] = changes.get("scheduled_date", session.scheduled_date)
        new_time: Optional[str] = changes.get("scheduled_time", session.scheduled_time)
        if (new_date is None) != (new_time is None):
            raise ValidationException(
                "scheduled_date and scheduled_time must be provided together",
                code="INVALID_SCHEDULE",
            )
        scheduled = new_date is not None
        new_platform = changes.get("platform", session.platform)
        time_changed = (new_date, new_time) != (session.scheduled_date, session.scheduled_time)
        window_changed = time_changed or (
            changes.get("duration_minutes", session.duration_minutes) != session.duration_minutes
        )
        platform_changed = new_platform != session.platform
        needs_meeting = scheduled and (
            window_changed or platform_changed or not session.meeting_link
        )

        if scheduled and time_changed:
            self._ensure_future(new_date, new_time, session.timezone)
        if needs_meeting:
            self._require_meeting_credential(consultant, new_platform)

        old_platform = session.platform
        old_meeting_id = session.meeting_id
        if scheduled and time_changed:
            self._ensure_slot_free(consultant.id, new_date, new_time, exclude_session_id=session.id)

        updated_in_place = False
        meeting: Optional[MeetingLink] = None
        if needs_meeting:
            draft = self._draft_session(session, changes)
            if not platform_changed and old_meeting_id and session.meeting_link:
                self.end_read_transaction()
                updated_in_place = self.meeting_service.update_meeting(draft, consultant, client)
            if not updated_in_place:
                meeting = self._create_meeting(draft, consultant, client, strict=True)

        fields = {**changes, **self._meeting_fields(meeting)}
        try:
            with self.transaction():
                if scheduled and time_changed:
                    self._ensure_slot_free(
                        consultant.id, new_date, new_time, exclude_session_id=session.id
                    )
                if fields and not self.session_repository.transition(
                    session.id, from_statuses=CANCELLABLE_SESSION_STATUSES, **fields
                ):
                    raise ValidationException(
                        "Session can no longer be rescheduled",
                        code="SESSION_NOT_RESCHEDULABLE",
                    )

                if time_changed:
                    self.availability_repository.release_for_session(session.id)
                    if scheduled:
                        self.availability_repository.claim_matching(
                            consultant.id, session.session_type, new_date, new_time, session.id
                        )
                self._publish_updated(session, consultant, client)
        except Exception as exc:
            if meeting is not None:
                self._discard_meeting(new_platform, meeting, consultant)
            elif updated_in_place:
                # Rolled back: move the provider meeting back to the stored window
                self.meeting_service.update_meeting(session, consultant, client)
            if scheduled and isinstance(exc, (RepositoryException, ServiceException)):
                self._raise_if_slot_conflict(exc, new_date, new_time)
            raise

        if meeting is not None and old_meeting_id:
            self.meeting_service.cancel_meeting(old_platform, old_meeting_id, consultant)
        self._invalidate_booking_caches(consultant)
        return session

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self, consultant_id: str, session_id: str, reason: Optional[str] = None
    ) -> ConsultationSession:
        """Cancel a PENDING / CONFIRMED session and free its slot."""
        session = self._get_session(consultant_id, session_id)
        if not session.is_cancellable:
            raise ValidationException(
                f"Cannot cancel a session with status {session.status}",
                code="SESSION_NOT_CANCELLABLE",
            )
        consultant = self._get_consultant(consultant_id, require_bookable=False)
        client = self.client_repository.get_by_id(session.client_id)

        cancelled_at = now_utc()
        note = f"Cancelled by consultant on {cancelled_at.isoformat()}"
        if reason:
            note = f"{note}: {reason}"
        notes = f"{session.consultant_notes}\n{note}" if session.consultant_notes else note

        with self.transaction():
            if not self.session_repository.transition(
                session.id,
                from_statuses=CANCELLABLE_SESSION_STATUSES,
                status=SessionStatus.CANCELLED.value,
                cancelled_at=cancelled_at,
                consultant_notes=notes,
            ):
                raise ValidationException(
                    "Session can no longer be cancelled", code="SESSION_NOT_CANCELLABLE"
                )
            self.availability_repository.release_for_session(session.id)
            if client is not None:
                self.publisher.publish(
                    SessionCancelled(
                        session_id=session.id,
                        consultant_name=consultant.full_name,
                        client_name=client.name,
                        client_email=client.email,
                        title=session.title,
                        scheduled_date=_iso(session.scheduled_date),
                        scheduled_time=session.scheduled_time,
                        reason=reason,
                    ),
                    aggregate_id=session.id,
                )

        self.meeting_service.cancel_meeting(session.platform, session.meeting_id, consultant)
        self.logger.info("Cancelled session %s", session.id)
        self._invalidate_booking_caches(consultant)
        return session

    # ------------------------------------------------------------------ helpers

    def _get_consultant(self, consultant_id: str, *, require_bookable: bool = True) -> Consultant:
        consultant = self.consultant_repository.get_by_id(consultant_id)
        if consultant is None or (require_bookable and not consultant.is_bookable):
            raise NotFoundException(
                "Consultant not found or not available for booking",
                code="CONSULTANT_NOT_FOUND",
            )
        return consultant

    def _get_session(self, consultant_id: str, session_id: str) -> ConsultationSession:
        session = self.session_repository.get_for_consultant(session_id, consultant_id)
        if session is None:
            raise NotFoundException("Session not found", code="SESSION_NOT_FOUND")
        return session

    def _check_price(
        self, consultant: Consultant, session_type: str, submitted: Decimal, *, strict: bool
    ) -> None:
        expected = consultant.price_for(session_type)
        if expected <= 0:
            # No list price configured for this session type
            return
        if abs(expected - Decimal(submitted)) <= settings.price_tolerance:
            return
        details = {
            "expected": str(expected),
            "submitted": str(submitted),
            "session_type": session_type,
        }
        if strict:
            raise ValidationException(
                f"Price mismatch: expected {expected}, got {submitted}",
                code="PRICE_MISMATCH",
                details=details,
            )
        self.logger.warning(
            "Price mismatch for consultant %s: expected %s, got %s",
            consultant.id,
            expected,
            submitted,
        )

    @staticmethod
    def _ensure_future(scheduled_date: date, scheduled_time: str, tz_name: str) -> None:
        if session_start_utc(scheduled_date, scheduled_time, tz_name) <= now_utc():
            raise ValidationException(
                "Cannot book a session in the past",
                code="PAST_TIME",
                details={
                    "scheduled_date": scheduled_date.isoformat(),
                    "scheduled_time": scheduled_time,
                },
            )

    def _ensure_slot_free(
        self,
        consultant_id: str,
        scheduled_date: date,
        scheduled_time: str,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> None:
        clash = self.session_repository.find_active_in_slot(
            consultant_id,
            scheduled_date,
            scheduled_time,
            exclude_session_id=exclude_session_id,
        )
        if clash is not None:
            raise SlotConflictException(
                details={
                    "scheduled_date": scheduled_date.isoformat(),
                    "scheduled_time": scheduled_time,
                    "conflicting_session_id": clash.id,
                }
            )

    @staticmethod
    def _slot_details(session: ConsultationSession) -> Dict[str, Any]:
        return {
            "scheduled_date": _iso(session.scheduled_date),
            "scheduled_time": session.scheduled_time,
        }

    def _raise_if_slot_conflict(
        self, exc: Exception, scheduled_date: Optional[date], scheduled_time: Optional[str]
    ) -> None:
        if is_active_slot_violation(exc):
            self.logger.info(
                "Slot %s %s taken by a concurrent booking", scheduled_date, scheduled_time
            )
            raise SlotConflictException(
                details={
                    "scheduled_date": _iso(scheduled_date),
                    "scheduled_time": scheduled_time,
                }
            ) from exc

    def _require_meeting_credential(self, consultant: Consultant, platform: str) -> None:
        try:
            self.meeting_service.check_credential(consultant, platform)
        except MeetingProviderError as exc:
            raise self.meeting_service.to_domain_exception(exc, platform) from exc

    def _require_open_slot(
        self, consultant_id: str, session_type: str, scheduled_date: date, scheduled_time: str
    ) -> AvailabilitySlot:
        slot = self.availability_repository.find_open_slot(
            consultant_id, session_type, scheduled_date, scheduled_time
        )
        if slot is None:
            raise ValidationException(
                "The selected time slot is not available",
                code="SLOT_UNAVAILABLE",
                details={
                    "scheduled_date": scheduled_date.isoformat(),
                    "scheduled_time": scheduled_time,
                },
            )
        return slot

    def _create_meeting(
        self,
        draft: ConsultationSession,
        consultant: Consultant,
        client: Client,
        *,
        strict: bool,
    ) -> Optional[MeetingLink]:
        """
        Create the provider meeting for a session that is not stored yet.

        Runs outside any transaction. Returns None when provisioning is
        deferred; with ``strict`` the provider error is raised instead.
        """
        self.end_read_transaction()
        try:
            return self.meeting_service.provision_for_session(draft, consultant, client)
        except MeetingProviderError as exc:
            if strict:
                raise self.meeting_service.to_domain_exception(exc, draft.platform) from exc
            self.logger.warning(
                "Deferring %s meeting for consultant %s: %s",
                draft.platform,
                consultant.id,
                exc.kind.value,
            )
            return None

    def _discard_meeting(
        self, platform: Optional[str], meeting: Optional[MeetingLink], consultant: Consultant
    ) -> None:
        if meeting is None:
            return
        self.logger.info("Cancelling meeting %s after failed write", meeting.meeting_id)
        self.meeting_service.cancel_meeting(platform, meeting.meeting_id, consultant)

    @staticmethod
    def _meeting_fields(meeting: Optional[MeetingLink]) -> Dict[str, Any]:
        if meeting is None:
            return {}
        return {
            "meeting_link": meeting.meeting_link,
            "meeting_id": meeting.meeting_id,
            "meeting_password": meeting.password,
        }

    @staticmethod
    def _draft_session(session: ConsultationSession, changes: Dict[str, Any]) -> ConsultationSession:
        """Unsaved copy of ``session`` with ``changes`` applied, for provider calls."""
        values = {name: getattr(session, name) for name in _MEETING_DETAIL_FIELDS}
        values.update({name: changes[name] for name in _MEETING_DETAIL_FIELDS if name in changes})
        return ConsultationSession(**values)

    def _find_or_create_client(
        self,
        consultant_id: str,
        full_name: str,
        email: str,
        phone_number: Optional[str],
    ) -> Client:
        email = email.strip().lower()
        client = self.client_repository.find_for_consultant(consultant_id, email)
        if client is not None:
            return client
        first_name, _, last_name = full_name.partition(" ")
        return self.client_repository.create(
            consultant_id=consultant_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            name=full_name,
            phone_number=phone_number,
            is_active=True,
            total_sessions=0,
            total_amount_paid=Decimal("0"),
        )

    def _record_offline_payment(self, session: ConsultationSession, client: Client) -> None:
        """COMPLETED offline transaction backing a session paid outside the gateway."""
        self.payment_repository.create(
            session_id=session.id,
            consultant_id=session.consultant_id,
            client_id=client.id,
            client_email=client.email,
            amount=session.amount,
            currency=session.currency,
            payment_method=session.payment_method,
            transaction_type=TransactionType.OFFLINE.value,
            gateway_order_id=f"offline_{ulid.ULID()}",
            status=TransactionStatus.COMPLETED.value,
            processed_at=now_utc(),
        )

    def _publish_booked(
        self, session: ConsultationSession, consultant: Consultant, client: Client
    ) -> None:
        self.publisher.publish(
            SessionBooked(
                session_id=session.id,
                consultant_name=consultant.full_name,
                client_name=client.name,
                client_email=client.email,
                title=session.title,
                scheduled_date=_iso(session.scheduled_date),
                scheduled_time=session.scheduled_time,
                timezone=session.timezone,
                amount=str(session.amount),
                currency=session.currency,
                meeting_link=session.meeting_link,
                booking_source=session.booking_source,
            ),
            aggregate_id=session.id,
        )

    def _publish_updated(
        self, session: ConsultationSession, consultant: Consultant, client: Client
    ) -> None:
        self.publisher.publish(
            SessionUpdated(
                session_id=session.id,
                consultant_name=consultant.full_name,
                client_name=client.name,
                client_email=client.email,
                title=session.title,
                scheduled_date=_iso(session.scheduled_date),
                scheduled_time=session.scheduled_time,
                timezone=session.timezone,
                meeting_link=session.meeting_link,
            ),
            aggregate_id=session.id,
            idempotency_key=f"session.updated:{session.id}:{now_utc().isoformat()}",
        )

    def _invalidate_booking_caches(self, consultant: Consultant) -> None:
        for pattern in (
            f"clients:{consultant.id}:*",
            f"sessions:{consultant.id}:*",
            f"dashboard_*:{consultant.id}:*",
            f"availability:{consultant.id}:*",
            f"slots:{consultant.slug}:*",
        ):
            self.invalidate_pattern(pattern)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
