# backend/consultdesk/repositories/event_outbox_repository.py
"""
Notification outbox rows.

Rows are written inside the business transaction that produced them and
delivered by the dispatcher task after commit. The idempotency key is
unique, so enqueueing the same notification twice yields one row.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from consultdesk.database.session_utils import get_dialect_name
from consultdesk.models.event_outbox import EventOutbox, EventOutboxStatus

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 1000


class EventOutboxRepository(BaseRepository[EventOutbox]):
    def __init__(self, db: Session):
        super().__init__(db, EventOutbox)
        self.dialect = get_dialect_name(db, default="postgresql").lower()

    def _insert_unless_present(self, values: dict[str, Any]) -> bool:
        """Insert ``values`` unless the idempotency key exists; True when a row was written."""
        if self.dialect == "postgresql":
            stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(EventOutbox.id)
            )
            return self.db.execute(stmt).scalar_one_or_none() is not None
        stmt = insert(EventOutbox).values(**values)
        if self.dialect == "sqlite":
            stmt = stmt.prefix_with("OR IGNORE")
        return bool(self.db.execute(stmt).rowcount)

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """Queue a notification; returns the row holding ``idempotency_key``, new or not."""
        key = idempotency_key or f"{event_type}:{aggregate_id}"
        written = self._insert_unless_present(
            {
                "id": str(ulid.ULID()),
                "event_type": event_type,
                "aggregate_id": aggregate_id,
                "payload": payload or {},
                "idempotency_key": key,
                "status": EventOutboxStatus.PENDING.value,
                "attempt_count": 0,
                "next_attempt_at": datetime.now(timezone.utc),
            }
        )
        if not written:
            logger.debug("Outbox key %s already queued", key)
        row = self.find_one_by(idempotency_key=key)
        if row is None:
            raise RuntimeError(f"Outbox row for {key} vanished after enqueue")
        return row

    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """PENDING rows whose next attempt is due, oldest schedule first."""
        stmt = (
            select(EventOutbox)
            .where(
                EventOutbox.status == EventOutboxStatus.PENDING.value,
                EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
            )
            .order_by(EventOutbox.next_attempt_at, EventOutbox.id)
            .limit(limit)
        )
        if self.dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return list(self.db.execute(stmt).scalars())

    def get_by_id(self, id: str, for_update: bool = False) -> Optional[EventOutbox]:
        if not (for_update and self.dialect == "postgresql"):
            return super().get_by_id(id)
        stmt = select(EventOutbox).where(EventOutbox.id == id).with_for_update(skip_locked=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        now = datetime.now(timezone.utc)
        self._guarded_update(
            [EventOutbox.id == event_id],
            {
                "status": EventOutboxStatus.SENT.value,
                "attempt_count": attempt_count,
                "last_error": None,
                "next_attempt_at": now,
                "updated_at": now,
            },
        )

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Record a failed attempt; a terminal failure moves the row to FAILED for good."""
        now = datetime.now(timezone.utc)
        if terminal:
            status, next_attempt = EventOutboxStatus.FAILED.value, now
        else:
            status = EventOutboxStatus.PENDING.value
            next_attempt = now + timedelta(seconds=max(backoff_seconds, 1))
        self._guarded_update(
            [EventOutbox.id == event_id],
            {
                "status": status,
                "attempt_count": attempt_count,
                "last_error": error[:LAST_ERROR_MAX_LENGTH] if error else None,
                "next_attempt_at": next_attempt,
                "updated_at": now,
            },
        )
