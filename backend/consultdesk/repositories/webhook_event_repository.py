"""Webhook ledger lookups and the processing claim."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from consultdesk.models.webhook_event import WebhookEvent
from consultdesk.repositories.base_repository import BaseRepository

# A failed row is claimable again so the gateway's redelivery retries it
CLAIMABLE_STATUSES = ("received", "failed")


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        return self.find_one_by(source=source, event_id=event_id)

    def claim_for_processing(
        self,
        event_id: str,
        *,
        claimable: Iterable[str] = CLAIMABLE_STATUSES,
    ) -> bool:
        """
        Move the row to ``processing`` if it is in a claimable state.

        False means another worker holds it or it already finished.
        """
        claimed = self._guarded_update(
            [WebhookEvent.id == event_id, WebhookEvent.status.in_(list(claimable))],
            {"status": "processing"},
        )
        return claimed == 1
