"""Razorpay REST API client.

Covers the three calls the payment flow needs: order creation, payment
lookup and refunds. Authentication is HTTP basic auth with the key id and
key secret.
"""

from __future__ import annotations

import logging
import time
from typing import Any, cast
import uuid

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class RazorpayError(RuntimeError):
    """Raised when the Razorpay API responds with an error or is unreachable."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class RazorpayClient:
    """HTTP client for the Razorpay REST API."""

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str | SecretStr,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._key_id = key_id
        self._key_secret = (
            key_secret.get_secret_value() if isinstance(key_secret, SecretStr) else key_secret
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def key_id(self) -> str:
        return self._key_id

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request to the Razorpay API."""
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(
                timeout=self._timeout,
                auth=(self._key_id, self._key_secret),
                transport=self._transport,
            ) as client:
                response = client.request(method, url, json=json_body)
        except httpx.TransportError as exc:
            logger.error("Razorpay API unreachable for %s %s: %s", method, path, exc)
            raise RazorpayError(
                message=f"Razorpay API unreachable: {exc}",
                status_code=None,
            ) from exc

        if response.status_code >= 400:
            error_body: dict[str, Any] = {}
            try:
                parsed_body = response.json()
                if isinstance(parsed_body, dict):
                    error_body = parsed_body
                else:
                    error_body = {"raw": response.text[:500]}
            except ValueError:
                error_body = {"raw": response.text[:500]}

            error = error_body.get("error") if isinstance(error_body.get("error"), dict) else {}
            message = (
                error.get("description") or error_body.get("message") or response.text[:200]
            )
            logger.error(
                "Razorpay API error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise RazorpayError(
                message=message,
                status_code=response.status_code,
                details=error or error_body,
            )

        return cast(dict[str, Any], response.json())

    # ── High-level API methods ──────────────────────────────────────────

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create an order for ``amount_minor`` (paise / cents)."""
        body: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": {k: v for k, v in (notes or {}).items() if v is not None},
        }
        return self._request("POST", "orders", json_body=body)

    def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return self._request("GET", f"payments/{payment_id}")

    def refund(
        self,
        payment_id: str,
        *,
        amount_minor: int | None = None,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Refund a captured payment; full refund when ``amount_minor`` is None."""
        body: dict[str, Any] = {}
        if amount_minor is not None:
            body["amount"] = amount_minor
        if notes:
            body["notes"] = {k: v for k, v in notes.items() if v is not None}
        return self._request("POST", f"payments/{payment_id}/refund", json_body=body)


class FakeRazorpayClient:
    """In-memory stand-in for tests and local development."""

    def __init__(self, *, key_id: str = "rzp_test_fake", **kwargs: Any) -> None:
        self._key_id = key_id
        self._calls: list[dict[str, Any]] = []
        self._errors: dict[str, RazorpayError] = {}
        self.orders: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}

    @property
    def key_id(self) -> str:
        return self._key_id

    def set_error(self, method: str, error: RazorpayError) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def add_payment(
        self,
        payment_id: str,
        *,
        order_id: str,
        amount_minor: int,
        status: str = "captured",
        method: str = "card",
        currency: str = "INR",
    ) -> dict[str, Any]:
        """Register a payment the way the gateway would after checkout."""
        payment = {
            "id": payment_id,
            "entity": "payment",
            "order_id": order_id,
            "amount": amount_minor,
            "currency": currency,
            "status": status,
            "method": method,
            "captured": status == "captured",
        }
        self.payments[payment_id] = payment
        return payment

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._calls.append(
            {
                "method": "create_order",
                "amount_minor": amount_minor,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            }
        )
        self._raise_if_injected("create_order")
        order = {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "entity": "order",
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
            "notes": notes or {},
            "created_at": int(time.time()),
        }
        self.orders[order["id"]] = order
        return order

    def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        self._calls.append({"method": "fetch_payment", "payment_id": payment_id})
        self._raise_if_injected("fetch_payment")
        payment = self.payments.get(payment_id)
        if payment is None:
            raise RazorpayError("The id provided does not exist", status_code=400)
        return dict(payment)

    def refund(
        self,
        payment_id: str,
        *,
        amount_minor: int | None = None,
        notes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._calls.append(
            {
                "method": "refund",
                "payment_id": payment_id,
                "amount_minor": amount_minor,
                "notes": notes or {},
            }
        )
        self._raise_if_injected("refund")
        payment = self.payments.get(payment_id, {})
        return {
            "id": f"rfnd_{uuid.uuid4().hex[:14]}",
            "entity": "refund",
            "payment_id": payment_id,
            "amount": amount_minor if amount_minor is not None else payment.get("amount"),
            "status": "processed",
            "notes": notes or {},
        }
