# backend/consultdesk/tasks/beat_schedule.py
"""
Celery Beat schedule for ConsultDesk.

Outbox dispatch runs every minute; session lifecycle jobs follow the
booking platform's cadence (status sweep every 10 minutes, reminders hourly).
"""

from typing import Any, Dict

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "dispatch-notification-outbox": {
        "task": "outbox.dispatch_pending",
        "schedule": crontab(minute="*"),
        "options": {"queue": "notifications"},
    },
    "advance-session-statuses": {
        "task": "sessions.advance_statuses",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "sessions"},
    },
    "send-session-reminders": {
        "task": "sessions.send_reminders",
        "schedule": crontab(minute=0),
        "options": {"queue": "sessions"},
    },
}


def get_beat_schedule(environment: str) -> Dict[str, Dict[str, Any]]:
    """Beat schedule for ``environment``; tests run nothing periodically."""
    if environment == "test":
        return {}
    return dict(CELERYBEAT_SCHEDULE)
