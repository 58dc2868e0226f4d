# backend/consultdesk/tasks/outbox_tasks.py
"""
Celery tasks for dispatching notification outbox events.

Two-step workflow:
1. `outbox.dispatch_pending` periodically enqueues delivery tasks.
2. `outbox.deliver_event` delivers one event with retries and backoff.

Delivery is at-least-once; the sender dedupes on the row's idempotency key.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from consultdesk.database import SessionLocal
from consultdesk.events.notification_events import NotificationKind
from consultdesk.monitoring.prometheus_metrics import PrometheusMetrics
from consultdesk.repositories.event_outbox_repository import EventOutboxRepository
from consultdesk.services.notification_sender import (
    LoggingNotificationSender,
    NotificationSender,
    NotificationSenderTemporaryError,
)
from consultdesk.tasks.celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]

_sender: NotificationSender = LoggingNotificationSender()


def set_notification_sender(sender: NotificationSender) -> None:
    """Swap the sender used by delivery tasks (wired at startup, or by tests)."""
    global _sender
    _sender = sender


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass
class DeliveryResult:
    status: str  # sent | missing | skipped | retry | failed
    attempts: int = 0
    backoff_seconds: Optional[int] = None
    error: Optional[str] = None


def deliver_outbox_event(
    session: Session, event_id: str, sender: NotificationSender
) -> DeliveryResult:
    """
    Attempt delivery of one outbox row and record the outcome on it.

    A False return from the sender or any exception counts as a failed
    attempt; the fifth failure is terminal.
    """
    repo = EventOutboxRepository(session)
    event = repo.get_by_id(event_id, for_update=True)
    if event is None:
        logger.warning("Outbox event %s missing; skipping", event_id)
        return DeliveryResult(status="missing")
    if event.status != "PENDING":
        return DeliveryResult(status="skipped", attempts=event.attempt_count)

    attempt_number = event.attempt_count + 1
    event_type = event.event_type
    PrometheusMetrics.record_notification_attempt(event_type)

    error: Optional[str] = None
    try:
        delivered = sender.send(
            NotificationKind(event_type), dict(event.payload or {}), event.idempotency_key
        )
        if not delivered:
            error = "Sender did not accept the notification"
    except NotificationSenderTemporaryError as exc:
        error = str(exc) or "Temporary sender failure"
    except Exception as exc:
        logger.exception("Error delivering outbox event %s", event_id)
        error = f"{type(exc).__name__}: {exc}"

    if error is None:
        repo.mark_sent(event_id, attempt_number)
        session.commit()
        PrometheusMetrics.record_notification_outcome(event_type, "sent")
        logger.info(
            "Delivered outbox event %s type=%s attempts=%s", event_id, event_type, attempt_number
        )
        return DeliveryResult(status="sent", attempts=attempt_number)

    backoff = _next_backoff(attempt_number)
    terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
    repo.mark_failed(
        event_id,
        attempt_count=attempt_number,
        backoff_seconds=backoff,
        error=error,
        terminal=terminal,
    )
    session.commit()
    if terminal:
        PrometheusMetrics.record_notification_outcome(event_type, "failed")
        logger.error("Outbox event %s failed after %s attempts", event_id, attempt_number)
        return DeliveryResult(status="failed", attempts=attempt_number, error=error)

    logger.warning(
        "Retrying outbox event %s attempt=%s backoff=%ss", event_id, attempt_number, backoff
    )
    return DeliveryResult(
        status="retry", attempts=attempt_number, backoff_seconds=backoff, error=error
    )


@celery_app.task(name="outbox.dispatch_pending", max_retries=0, queue="notifications")
def dispatch_pending() -> int:
    """
    Fetch pending outbox events and enqueue delivery tasks.

    Returns the number of events scheduled.
    """
    with _session_scope() as session:
        pending = EventOutboxRepository(session).fetch_pending(limit=200)
        for event in pending:
            deliver_event.apply_async((event.id,), queue="notifications")
        scheduled = len(pending)
        if scheduled:
            logger.info("Scheduled %s outbox events for delivery", scheduled)
        return scheduled


@celery_app.task(
    name="outbox.deliver_event",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    queue="notifications",
)
def deliver_event(self: "Task[Any, Any]", event_id: str) -> Optional[str]:
    """Deliver a single outbox event, retrying with the outbox backoff."""
    session = SessionLocal()
    try:
        result = deliver_outbox_event(session, event_id, _sender)
    finally:
        session.close()

    if result.status == "retry":
        raise self.retry(
            countdown=result.backoff_seconds,
            exc=NotificationSenderTemporaryError(result.error or "delivery failed"),
        )
    return event_id if result.status == "sent" else None
