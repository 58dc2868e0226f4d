# backend/consultdesk/core/exceptions.py
"""
Domain exceptions.

Each carries an HTTP status, a human message and a machine ``code`` the
client can branch on (reconnect an account, pick another slot, retry).
``errors.py`` renders them; services raise them and never build responses.
"""

from typing import Any, Dict, Optional

from fastapi import status


class DomainException(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    # Rendered as a Retry-After header when set
    retry_after_seconds: Optional[int] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ValidationException(DomainException):
    """The request is well-formed but violates a business rule."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    status_code = status.HTTP_404_NOT_FOUND


class ServiceException(DomainException):
    """An operation could not complete for reasons outside the caller's control."""


class ProviderException(ServiceException):
    """The payment gateway or a meeting provider failed or refused."""

    status_code = status.HTTP_502_BAD_GATEWAY


class SlotConflictException(ValidationException):
    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message or "This time slot is already booked. Please choose a different time.",
            code="SLOT_CONFLICT",
            details=details,
        )


class InvalidSignatureException(ValidationException):
    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message, code="INVALID_SIGNATURE")


class PaymentAlreadyProcessedException(ValidationException):
    """
    The transaction targeted by a payment event has already left PENDING.

    A second completion for the same order (client callback racing the
    webhook) ends here. Webhook handling treats it as an acknowledged no-op.
    """

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, order_id: str, current_status: Optional[str] = None):
        super().__init__(
            "Payment transaction not found or already processed",
            code="PAYMENT_ALREADY_PROCESSED",
            details={"order_id": order_id, "status": current_status},
        )


class WebhookInProgressException(ServiceException):
    """Another worker holds the ledger row for this delivery."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retry_after_seconds = 2

    def __init__(self, event_id: str):
        super().__init__(
            "Webhook delivery is already being processed",
            code="WEBHOOK_IN_PROGRESS",
            details={"event_id": event_id},
        )


class RepositoryException(Exception):
    """A data access call failed; the SQLAlchemy error is chained as ``__cause__``."""
