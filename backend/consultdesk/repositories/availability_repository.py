"""Repository for availability slots held by sessions."""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..models.availability import AvailabilitySlot
from .base_repository import BaseRepository


class AvailabilityRepository(BaseRepository[AvailabilitySlot]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySlot)

    def find_open_slot(
        self,
        consultant_id: str,
        session_type: str,
        slot_date: date,
        start_time: str,
    ) -> Optional[AvailabilitySlot]:
        query = self._build_query().filter(
            AvailabilitySlot.consultant_id == consultant_id,
            AvailabilitySlot.session_type == session_type,
            AvailabilitySlot.date == slot_date,
            AvailabilitySlot.start_time == start_time,
            AvailabilitySlot.is_booked.is_(False),
            AvailabilitySlot.is_blocked.is_(False),
        )
        results = self._execute_query(query.limit(1))
        return results[0] if results else None

    def claim(self, slot_id: str, session_id: str) -> bool:
        """Mark an open slot booked for ``session_id``; False if someone else got it."""
        updated = self._guarded_update(
            [AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(False)],
            {"is_booked": True, "session_id": session_id},
        )
        return updated == 1

    def claim_matching(
        self,
        consultant_id: str,
        session_type: str,
        slot_date: date,
        start_time: str,
        session_id: str,
    ) -> int:
        """Book any open slot matching the session's time (manual sessions)."""
        return self._guarded_update(
            [
                AvailabilitySlot.consultant_id == consultant_id,
                AvailabilitySlot.session_type == session_type,
                AvailabilitySlot.date == slot_date,
                AvailabilitySlot.start_time == start_time,
                AvailabilitySlot.is_booked.is_(False),
            ],
            {"is_booked": True, "session_id": session_id},
        )

    def release_for_session(self, session_id: str) -> int:
        return self._guarded_update(
            [AvailabilitySlot.session_id == session_id],
            {"is_booked": False, "session_id": None},
        )
