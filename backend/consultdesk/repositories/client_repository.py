"""
Repository for consultant-scoped clients and the client ledger.

Ledger counters are changed with ``SET col = col + :delta`` statements so
concurrent bookings and payments for the same client never lose an update.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.client import Client
from .base_repository import BaseRepository


class ClientRepository(BaseRepository[Client]):
    def __init__(self, db: Session):
        super().__init__(db, Client)

    def find_for_consultant(self, consultant_id: str, email: str) -> Optional[Client]:
        return self.find_one_by(consultant_id=consultant_id, email=email)

    def get_for_consultant(self, client_id: str, consultant_id: str) -> Optional[Client]:
        return self.find_one_by(id=client_id, consultant_id=consultant_id)

    def apply_ledger_delta(
        self,
        client_id: str,
        *,
        sessions: int = 0,
        amount: Decimal = Decimal("0"),
    ) -> bool:
        """Atomically add ``sessions`` / ``amount`` to the client's running totals."""
        values = {}
        if sessions:
            values["total_sessions"] = Client.total_sessions + sessions
        if amount:
            values["total_amount_paid"] = Client.total_amount_paid + amount
        if not values:
            return False
        updated = self._guarded_update([Client.id == client_id], values)
        if not updated:
            self.logger.warning("Ledger update skipped: client %s not found", client_id)
        return bool(updated)
