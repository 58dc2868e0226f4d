"""Notification publisher - writes events to the transactional outbox."""

import logging
from typing import Optional

from consultdesk.repositories.event_outbox_repository import EventOutboxRepository

from .notification_events import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Queues notification events in the caller's transaction."""

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(
        self,
        event: NotificationEvent,
        *,
        aggregate_id: str,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """
        Enqueue ``event``; nothing is sent until the surrounding transaction commits.

        The default idempotency key is ``<kind>:<aggregate_id>`` so replays of the
        same business transition enqueue one notification.
        """
        key = idempotency_key or f"{event.kind.value}:{aggregate_id}"
        self.outbox_repo.enqueue(
            event_type=event.kind.value,
            aggregate_id=aggregate_id,
            payload=event.to_dict(),
            idempotency_key=key,
        )
        logger.debug("Queued %s notification for %s", event.kind.value, aggregate_id)
