"""Repository for quotations paid through the gateway."""

from datetime import datetime

from sqlalchemy.orm import Session

from ..core.enums import QuotationStatus
from ..models.quotation import Quotation
from .base_repository import BaseRepository


class QuotationRepository(BaseRepository[Quotation]):
    def __init__(self, db: Session):
        super().__init__(db, Quotation)

    def mark_accepted(self, quotation_id: str, responded_at: datetime) -> bool:
        updated = self._guarded_update(
            [
                Quotation.id == quotation_id,
                Quotation.status != QuotationStatus.ACCEPTED.value,
            ],
            {"status": QuotationStatus.ACCEPTED.value, "responded_at": responded_at},
        )
        return updated == 1
