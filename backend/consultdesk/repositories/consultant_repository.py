"""Repository for consultant lookups."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.consultant import Consultant
from .base_repository import BaseRepository


class ConsultantRepository(BaseRepository[Consultant]):
    def __init__(self, db: Session):
        super().__init__(db, Consultant)

    def get_bookable_by_slug(self, slug: str) -> Optional[Consultant]:
        """Consultant that can take public bookings (active, verified, approved)."""
        query = self._build_query().filter(
            Consultant.slug == slug,
            Consultant.is_active.is_(True),
            Consultant.is_email_verified.is_(True),
            Consultant.is_approved_by_admin.is_(True),
        )
        results = self._execute_query(query.limit(1))
        return results[0] if results else None
