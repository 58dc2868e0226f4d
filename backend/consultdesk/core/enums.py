# backend/consultdesk/core/enums.py
"""
Core enums for the booking and payment engine.

All values are persisted as plain strings; enums inherit from (str, Enum)
so comparisons against column values work without conversion.
"""

from enum import Enum


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"
    ABANDONED = "ABANDONED"
    NO_SHOW = "NO_SHOW"


class SessionPaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    OFFLINE = "offline"


class SessionType(str, Enum):
    PERSONAL = "PERSONAL"
    WEBINAR = "WEBINAR"


class MeetingPlatform(str, Enum):
    MEET = "MEET"
    TEAMS = "TEAMS"
    ZOOM = "ZOOM"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class BookingSource(str, Enum):
    PUBLIC_BOOKING = "public_booking"
    MANUALLY_ADDED = "manually_added"
    PLATFORM_INITIATED = "platform_initiated"


class QuotationStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Only these states may be cancelled or rescheduled.
CANCELLABLE_SESSION_STATUSES = (SessionStatus.PENDING.value, SessionStatus.CONFIRMED.value)
