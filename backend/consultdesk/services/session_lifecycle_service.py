# backend/consultdesk/services/session_lifecycle_service.py
"""
Time-based session reconciliation run by Celery beat.

- CONFIRMED sessions that started within the auto-start window move to IN_PROGRESS.
- IN_PROGRESS sessions whose start is older than the auto-complete delay move to COMPLETED.
- CONFIRMED sessions scheduled for tomorrow get a single reminder notification.

All moves are guarded bulk updates, so overlapping runs and concurrent
cancellations are safe.
"""

from datetime import date, datetime, timedelta
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SessionStatus
from ..core.timezone_utils import get_booking_timezone, now_utc
from ..events.notification_events import SessionReminder
from ..events.publisher import NotificationPublisher
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class SessionLifecycleService(BaseService):
    def __init__(self, db: Session, publisher: Optional[NotificationPublisher] = None):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.consultant_repository = RepositoryFactory.create_consultant_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.publisher = publisher or NotificationPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    @BaseService.measure_operation("advance_statuses")
    def advance_statuses(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Move sessions along CONFIRMED -> IN_PROGRESS -> COMPLETED by the clock."""
        now = now or now_utc()
        today = now.astimezone(get_booking_timezone()).date()
        start_window = timedelta(minutes=settings.session_auto_start_window_minutes)
        complete_after = timedelta(minutes=settings.session_auto_complete_after_minutes)

        starting = [
            session.id
            for session in self.session_repository.find_scheduled_between(
                SessionStatus.CONFIRMED.value, today - timedelta(days=1), today + timedelta(days=1)
            )
            if session.starts_at is not None and now - start_window <= session.starts_at <= now
        ]
        finishing = [
            session.id
            for session in self.session_repository.find_scheduled_between(
                SessionStatus.IN_PROGRESS.value, date.min, today + timedelta(days=1)
            )
            if session.starts_at is not None and session.starts_at < now - complete_after
        ]

        with self.transaction():
            started = self.session_repository.bulk_transition(
                starting,
                from_status=SessionStatus.CONFIRMED.value,
                status=SessionStatus.IN_PROGRESS.value,
            )
            completed = self.session_repository.bulk_transition(
                finishing,
                from_status=SessionStatus.IN_PROGRESS.value,
                status=SessionStatus.COMPLETED.value,
                completed_at=now,
            )

        if started or completed:
            self.logger.info("Session lifecycle: %d started, %d completed", started, completed)
        return {"started": started, "completed": completed}

    @BaseService.measure_operation("send_reminders")
    def send_reminders(self, now: Optional[datetime] = None) -> int:
        """Queue one reminder per CONFIRMED session scheduled for tomorrow (booking timezone)."""
        now = now or now_utc()
        tomorrow = now.astimezone(get_booking_timezone()).date() + timedelta(days=1)
        sent = 0
        for session in self.session_repository.find_reminder_candidates(tomorrow):
            consultant = self.consultant_repository.get_by_id(session.consultant_id)
            client = self.client_repository.get_by_id(session.client_id)
            if consultant is None or client is None:
                continue
            with self.transaction():
                if not self.session_repository.mark_reminder_sent(session.id):
                    continue
                self.publisher.publish(
                    SessionReminder(
                        session_id=session.id,
                        consultant_name=consultant.full_name,
                        client_name=client.name,
                        client_email=client.email,
                        title=session.title,
                        scheduled_date=session.scheduled_date.isoformat(),
                        scheduled_time=session.scheduled_time,
                        timezone=session.timezone,
                        meeting_link=session.meeting_link,
                    ),
                    aggregate_id=session.id,
                )
            sent += 1
        if sent:
            self.logger.info("Queued %d session reminder(s) for %s", sent, tomorrow.isoformat())
        return sent
