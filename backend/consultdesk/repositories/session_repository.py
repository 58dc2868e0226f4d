# backend/consultdesk/repositories/session_repository.py
"""
Session Store data access.

Slot conflict queries and every status change go through here. Status
changes are guarded updates (the expected current status is part of the
WHERE clause) so user actions and background jobs can race safely.
"""

from datetime import date
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import SessionStatus
from ..models.session import ConsultationSession
from .base_repository import BaseRepository


class SessionRepository(BaseRepository[ConsultationSession]):
    def __init__(self, db: Session):
        super().__init__(db, ConsultationSession)

    def get_for_consultant(
        self, session_id: str, consultant_id: str
    ) -> Optional[ConsultationSession]:
        return self.find_one_by(id=session_id, consultant_id=consultant_id)

    def find_active_in_slot(
        self,
        consultant_id: str,
        scheduled_date: date,
        scheduled_time: str,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> Optional[ConsultationSession]:
        """Return a non-cancelled session occupying the slot, if any."""
        query = self._build_query().filter(
            ConsultationSession.consultant_id == consultant_id,
            ConsultationSession.scheduled_date == scheduled_date,
            ConsultationSession.scheduled_time == scheduled_time,
            ConsultationSession.status != SessionStatus.CANCELLED.value,
        )
        if exclude_session_id:
            query = query.filter(ConsultationSession.id != exclude_session_id)
        results = self._execute_query(query.limit(1))
        return results[0] if results else None

    def transition(
        self,
        session_id: str,
        *,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        """Apply ``values`` only while the session is in one of ``from_statuses``."""
        allowed = [str(getattr(s, "value", s)) for s in from_statuses]
        updated = self._guarded_update(
            [ConsultationSession.id == session_id, ConsultationSession.status.in_(allowed)],
            values,
        )
        return updated == 1

    def bulk_transition(
        self,
        session_ids: List[str],
        *,
        from_status: str,
        **values: Any,
    ) -> int:
        """Guarded bulk status change; returns how many rows actually moved."""
        if not session_ids:
            return 0
        return self._guarded_update(
            [
                ConsultationSession.id.in_(session_ids),
                ConsultationSession.status == from_status,
            ],
            values,
        )

    def find_scheduled_between(
        self, status: str, start_date: date, end_date: date
    ) -> List[ConsultationSession]:
        """Scheduled sessions in ``status`` whose local date is within the range."""
        query = self._build_query().filter(
            ConsultationSession.status == status,
            ConsultationSession.scheduled_date.isnot(None),
            ConsultationSession.scheduled_date >= start_date,
            ConsultationSession.scheduled_date <= end_date,
        )
        return self._execute_query(query)

    def find_reminder_candidates(self, scheduled_date: date) -> List[ConsultationSession]:
        query = self._build_query().filter(
            ConsultationSession.status == SessionStatus.CONFIRMED.value,
            ConsultationSession.scheduled_date == scheduled_date,
            ConsultationSession.reminder_sent.is_(False),
        )
        return self._execute_query(query)

    def mark_reminder_sent(self, session_id: str) -> bool:
        """Flip ``reminder_sent`` once; a concurrent run sees False."""
        updated = self._guarded_update(
            [
                ConsultationSession.id == session_id,
                ConsultationSession.reminder_sent.is_(False),
            ],
            {"reminder_sent": True},
        )
        return updated == 1
