# backend/consultdesk/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import booking, payments, sessions, webhooks

__all__ = ["booking", "payments", "sessions", "webhooks"]
