# backend/consultdesk/tasks/session_tasks.py
"""Periodic session lifecycle tasks (status sweep and reminders)."""

from typing import Dict

from celery.utils.log import get_task_logger

from consultdesk.database import SessionLocal
from consultdesk.services.session_lifecycle_service import SessionLifecycleService
from consultdesk.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="sessions.advance_statuses", max_retries=0, queue="sessions")
def advance_statuses() -> Dict[str, int]:
    session = SessionLocal()
    try:
        return SessionLifecycleService(session).advance_statuses()
    finally:
        session.close()


@celery_app.task(name="sessions.send_reminders", max_retries=0, queue="sessions")
def send_reminders() -> int:
    session = SessionLocal()
    try:
        queued = SessionLifecycleService(session).send_reminders()
        logger.info("Queued %s reminders", queued)
        return queued
    finally:
        session.close()
