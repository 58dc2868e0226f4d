# backend/consultdesk/tasks/celery_app.py
"""
Celery application for ConsultDesk background work.

Two queues: ``notifications`` drains the outbox, ``sessions`` runs the
lifecycle sweeps (status advancement, reminders). Redis is broker and
result backend unless configured otherwise.
"""

import logging
from typing import Any, Type, cast
from urllib.parse import urlsplit

from celery import Celery, Task
from celery.signals import setup_logging

from consultdesk.core.config import settings

logger = logging.getLogger(__name__)

TASK_MODULES = (
    "consultdesk.tasks.outbox_tasks",
    "consultdesk.tasks.session_tasks",
)

CELERY_CONFIG = {
    "task_serializer": "json",
    "result_serializer": "json",
    "accept_content": ["json"],
    "enable_utc": True,
    # Late acks: a killed worker leaves the message for another worker
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "task_soft_time_limit": 120,
    "task_time_limit": 300,
    "worker_prefetch_multiplier": 1,
    "worker_hijack_root_logger": False,
    "broker_transport_options": {"visibility_timeout": 3600},
    "task_routes": {
        "outbox.*": {"queue": "notifications"},
        "sessions.*": {"queue": "sessions"},
    },
}


def redis_url_with_db(url: str) -> str:
    """Append ``/0`` to a Redis URL that names no database."""
    parts = urlsplit(url)
    if parts.scheme.startswith("redis") and parts.path.strip("/") == "":
        return parts._replace(path="/0").geturl()
    return url


def create_celery_app() -> Celery:
    from consultdesk.tasks.beat_schedule import get_beat_schedule

    broker = redis_url_with_db(
        settings.celery_broker_url or settings.redis_url or "redis://localhost:6379"
    )
    app = Celery(
        "consultdesk",
        broker=broker,
        backend=settings.celery_result_backend or broker,
        include=list(TASK_MODULES),
    )
    app.conf.update(
        CELERY_CONFIG,
        timezone=settings.booking_timezone,
        beat_schedule=get_beat_schedule(settings.environment),
    )
    return app


@setup_logging.connect  # type: ignore[misc]
def configure_worker_logging(*args: Any, **kwargs: Any) -> None:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class LoggedTask(Task):  # type: ignore[misc]
    """Logs the task name and id when a task raises."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            "Task %s[%s] failed: %s",
            self.name,
            task_id,
            exc,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app = create_celery_app()
celery_app.Task = cast(Type[Task], LoggedTask)
