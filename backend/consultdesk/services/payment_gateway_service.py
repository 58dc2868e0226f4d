# backend/consultdesk/services/payment_gateway_service.py
"""
Payment Gateway Adapter.

Wraps the Razorpay client with the platform's local rules: amount bounds,
supported currencies, the per-consultant daily cap, receipts and notes, and
HMAC signature checks for client callbacks and webhooks. Every gateway order
is paired with a PENDING ``PaymentTransaction`` row.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Dict, Optional, Union

from pydantic import SecretStr
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    CANCELLABLE_SESSION_STATUSES,
    QuotationStatus,
    SessionPaymentStatus,
    TransactionStatus,
    TransactionType,
)
from ..core.exceptions import (
    NotFoundException,
    PaymentAlreadyProcessedException,
    ProviderException,
    ValidationException,
)
from ..core.timezone_utils import local_midnight_utc, now_utc
from ..integrations.razorpay_client import RazorpayError
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import CreateOrderRequest, PublicCreateOrderRequest
from .base import BaseService
from .cache_service import CacheService

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

_CLOSED_QUOTATION_STATUSES = (
    QuotationStatus.ACCEPTED.value,
    QuotationStatus.REJECTED.value,
    QuotationStatus.EXPIRED.value,
)


def to_minor_units(amount: Decimal) -> int:
    """Rupees / dollars to paise / cents, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Union[int, str, None]) -> Optional[Decimal]:
    if value is None:
        return None
    return (Decimal(str(value)) / 100).quantize(_CENT)


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


@dataclass
class OrderResult:
    order_id: str
    amount: Decimal
    currency: str
    transaction_id: str
    key_id: str
    receipt: str
    created_at: datetime


class PaymentGatewayService(BaseService):
    """Order creation, signature checks, payment lookup and refunds."""

    def __init__(
        self,
        db: Session,
        gateway_client: Any,
        cache: Optional[CacheService] = None,
        *,
        key_secret: Union[str, SecretStr, None] = None,
        webhook_secret: Union[str, SecretStr, None] = None,
    ):
        super().__init__(db, cache)
        self.client = gateway_client
        self._key_secret = self._unwrap(key_secret, settings.razorpay_key_secret)
        self._webhook_secret = self._unwrap(webhook_secret, settings.razorpay_webhook_secret)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.quotation_repository = RepositoryFactory.create_quotation_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    @staticmethod
    def _unwrap(value: Union[str, SecretStr, None], default: Optional[SecretStr]) -> str:
        if value is None:
            return settings.secret_value(default)
        if isinstance(value, SecretStr):
            return value.get_secret_value()
        return value

    @property
    def key_id(self) -> str:
        return self.client.key_id

    # ------------------------------------------------------------------ orders

    @BaseService.measure_operation("create_order")
    def create_order(self, consultant_id: str, request: CreateOrderRequest) -> OrderResult:
        """
        Create a gateway order and its PENDING transaction.

        Limits, and the session or quotation being paid, are validated locally
        before the gateway is called: the target must still be payable, the
        amount must match what it costs, and it may have only one live order.
        If the local insert fails after the gateway accepted the order, the
        error propagates and the unpaid order simply expires on the gateway side.
        """
        amount = Decimal(request.amount).quantize(_CENT)
        currency = (request.currency or settings.payment_default_currency).upper()
        self._validate_limits(consultant_id, amount, currency)

        session_id = request.session_id
        quotation_id = request.quotation_id
        client_id = request.client_id
        client_email = str(request.client_email) if request.client_email else None
        client_name = request.client_name

        if session_id:
            session = self.session_repository.get_for_consultant(session_id, consultant_id)
            if session is None:
                raise NotFoundException("Session not found", code="SESSION_NOT_FOUND")
            self._check_session_payable(session, amount)
            client_id = session.client_id
        elif quotation_id:
            quotation = self.quotation_repository.find_one_by(
                id=quotation_id, consultant_id=consultant_id
            )
            if quotation is None:
                raise NotFoundException("Quotation not found", code="QUOTATION_NOT_FOUND")
            self._check_quotation_payable(quotation, amount)
            client_id = client_id or quotation.client_id
            client_email = client_email or quotation.client_email
            client_name = client_name or quotation.client_name

        if client_id:
            client = self.client_repository.get_for_consultant(client_id, consultant_id)
            if client is None:
                raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND")
            client_email = client_email or client.email
            client_name = client_name or client.name

        receipt = request.receipt or f"rcpt_{int(time.time())}_{secrets.token_hex(4)}"
        notes = {
            "consultant_id": consultant_id,
            "client_email": client_email,
            "client_name": client_name,
            "session_id": session_id,
            "quotation_id": quotation_id,
        }

        try:
            order = self.client.create_order(
                amount_minor=to_minor_units(amount),
                currency=currency,
                receipt=receipt,
                notes=notes,
            )
        except RazorpayError as exc:
            raise ProviderException(
                f"Failed to create payment order: {exc.message}",
                code="PAYMENT_GATEWAY_ERROR",
                details={"gateway_status": exc.status_code},
            ) from exc

        with self.transaction():
            transaction = self.payment_repository.create(
                session_id=session_id,
                quotation_id=quotation_id,
                consultant_id=consultant_id,
                client_id=client_id,
                client_email=client_email,
                amount=amount,
                currency=currency,
                transaction_type=TransactionType.PAYMENT.value,
                gateway_order_id=order["id"],
                gateway_response={"order": order},
                status=TransactionStatus.PENDING.value,
            )

        created_epoch = order.get("created_at")
        created_at = (
            datetime.fromtimestamp(int(created_epoch), tz=timezone.utc)
            if created_epoch
            else now_utc()
        )
        self.logger.info(
            "Created order %s (%s %s) for consultant %s",
            order["id"],
            amount,
            currency,
            consultant_id,
            extra={"transaction_id": transaction.id},
        )
        return OrderResult(
            order_id=order["id"],
            amount=amount,
            currency=currency,
            transaction_id=transaction.id,
            key_id=self.key_id,
            receipt=receipt,
            created_at=created_at,
        )

    @BaseService.measure_operation("create_public_order")
    def create_public_order(self, request: PublicCreateOrderRequest) -> OrderResult:
        """
        Order for a publicly booked session, without consultant credentials.

        The consultant is taken from the session; everything else goes through
        the same checks as ``create_order``.
        """
        session = self.session_repository.get_by_id(request.session_id)
        if session is None:
            raise NotFoundException("Session not found", code="SESSION_NOT_FOUND")
        return self.create_order(session.consultant_id, request.to_order_request())

    def _check_session_payable(self, session: Any, amount: Decimal) -> None:
        if session.payment_status != SessionPaymentStatus.PENDING.value:
            raise ValidationException(
                "Session payment has already been processed",
                code="SESSION_NOT_PAYABLE",
                details={"payment_status": session.payment_status},
            )
        if session.status not in CANCELLABLE_SESSION_STATUSES:
            raise ValidationException(
                f"Cannot take payment for a session with status {session.status}",
                code="SESSION_NOT_PAYABLE",
                details={"status": session.status},
            )
        self._check_amount(session.amount, amount)
        self._check_no_open_order(session_id=session.id)

    def _check_quotation_payable(self, quotation: Any, amount: Decimal) -> None:
        if quotation.status in _CLOSED_QUOTATION_STATUSES:
            raise ValidationException(
                f"Cannot take payment for a quotation with status {quotation.status}",
                code="QUOTATION_NOT_PAYABLE",
                details={"status": quotation.status},
            )
        self._check_amount(quotation.final_amount, amount)
        self._check_no_open_order(quotation_id=quotation.id)

    @staticmethod
    def _check_amount(expected: Optional[Decimal], amount: Decimal) -> None:
        if expected is None:
            return
        if abs(Decimal(expected) - amount) > settings.price_tolerance:
            raise ValidationException(
                "Amount does not match the amount due",
                code="AMOUNT_MISMATCH",
                details={"expected": str(expected), "submitted": str(amount)},
            )

    def _check_no_open_order(
        self, *, session_id: Optional[str] = None, quotation_id: Optional[str] = None
    ) -> None:
        """One live gateway order per target; the existing order id is returned for resuming checkout."""
        existing = self.payment_repository.find_open_for_target(
            session_id=session_id, quotation_id=quotation_id
        )
        if existing is not None:
            raise PaymentAlreadyProcessedException(existing.gateway_order_id, existing.status)

    def _validate_limits(self, consultant_id: str, amount: Decimal, currency: str) -> None:
        if currency not in settings.payment_supported_currencies:
            raise ValidationException(
                f"Currency {currency} is not supported",
                code="UNSUPPORTED_CURRENCY",
                details={"supported": settings.payment_supported_currencies},
            )
        if amount < settings.payment_min_amount:
            raise ValidationException(
                f"Amount must be at least {settings.payment_min_amount}",
                code="AMOUNT_TOO_LOW",
            )
        if amount > settings.payment_max_amount:
            raise ValidationException(
                f"Amount may not exceed {settings.payment_max_amount}",
                code="AMOUNT_TOO_HIGH",
            )
        collected_today = self.payment_repository.sum_completed_since(
            consultant_id, local_midnight_utc(settings.booking_timezone)
        )
        if collected_today + amount > settings.payment_daily_limit:
            raise ValidationException(
                "Daily payment limit exceeded",
                code="DAILY_LIMIT_EXCEEDED",
                details={
                    "collected_today": str(collected_today),
                    "daily_limit": str(settings.payment_daily_limit),
                },
            )

    # -------------------------------------------------------------- signatures

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout callback signature: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
        if not self._key_secret:
            self.logger.error("Razorpay key secret is not configured; rejecting signature")
            return False
        expected = _hmac_sha256_hex(self._key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Webhook signature over the raw request bytes with the webhook secret."""
        if not self._webhook_secret:
            self.logger.error("Razorpay webhook secret is not configured; rejecting webhook")
            return False
        if not signature:
            return False
        expected = _hmac_sha256_hex(self._webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)

    # --------------------------------------------------------- gateway lookups

    @BaseService.measure_operation("fetch_payment")
    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            return self.client.fetch_payment(payment_id)
        except RazorpayError as exc:
            if exc.status_code in (400, 404):
                raise NotFoundException(
                    "Payment not found at the gateway",
                    code="PAYMENT_NOT_FOUND",
                    details={"payment_id": payment_id},
                ) from exc
            raise ProviderException(
                f"Failed to fetch payment: {exc.message}",
                code="PAYMENT_GATEWAY_ERROR",
                details={"gateway_status": exc.status_code},
            ) from exc

    @BaseService.measure_operation("refund")
    def refund(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Refund a captured payment; a full refund when ``amount`` is None."""
        try:
            return self.client.refund(
                payment_id,
                amount_minor=to_minor_units(amount) if amount is not None else None,
                notes=notes,
            )
        except RazorpayError as exc:
            raise ProviderException(
                f"Refund failed: {exc.message}",
                code="REFUND_FAILED",
                details={"gateway_status": exc.status_code, "payment_id": payment_id},
            ) from exc
