# backend/consultdesk/routes/v1/payments.py
"""
Payment API Routes - API v1

Versioned payment endpoints under /api/v1/payments.

Endpoints:
    POST /create-order    → Create a gateway order and its PENDING transaction
    POST /public/create-order → Same, for a publicly booked session (no consultant header)
    POST /verify          → Checkout callback: verify and complete a payment
    POST /public/verify   → Alias of /verify for the public booking page
    POST /failure         → Checkout callback: record a failed payment
    POST /refund          → Refund a completed payment
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...dependencies import (
    get_current_consultant_id,
    get_payment_gateway_service,
    get_reconciliation_service,
)
from ...schemas.payment import (
    CreateOrderRequest,
    CreateOrderResponse,
    PaymentFailureRequest,
    PaymentFailureResponse,
    PaymentTransactionResponse,
    PublicCreateOrderRequest,
    RefundRequest,
    VerifyPaymentRequest,
)
from ...services.payment_gateway_service import OrderResult, PaymentGatewayService
from ...services.payment_reconciliation_service import PaymentReconciliationService

logger = logging.getLogger(__name__)

# V1 router - the /payments prefix is added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(
    payload: CreateOrderRequest,
    consultant_id: str = Depends(get_current_consultant_id),
    gateway: PaymentGatewayService = Depends(get_payment_gateway_service),
) -> CreateOrderResponse:
    result = await asyncio.to_thread(gateway.create_order, consultant_id, payload)
    return _order_response(result)


@router.post("/public/create-order", response_model=CreateOrderResponse)
async def create_public_order(
    payload: PublicCreateOrderRequest,
    gateway: PaymentGatewayService = Depends(get_payment_gateway_service),
) -> CreateOrderResponse:
    """Order for a session booked from a public page; the session names the consultant."""
    result = await asyncio.to_thread(gateway.create_public_order, payload)
    return _order_response(result)


def _order_response(result: OrderResult) -> CreateOrderResponse:
    return CreateOrderResponse(
        order_id=result.order_id,
        amount=result.amount,
        currency=result.currency,
        transaction_id=result.transaction_id,
        key_id=result.key_id,
        receipt=result.receipt,
        created_at=result.created_at,
    )


@router.post("/verify", response_model=PaymentTransactionResponse)
@router.post("/public/verify", response_model=PaymentTransactionResponse)
async def verify_payment(
    payload: VerifyPaymentRequest,
    reconciler: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> PaymentTransactionResponse:
    """
    Complete a payment from the checkout callback.

    A replay of an already completed payment answers 409
    ``PAYMENT_ALREADY_PROCESSED``.
    """

    def _verify() -> PaymentTransactionResponse:
        transaction = reconciler.process_successful_payment(
            payload.order_id, payload.payment_id, payload.signature
        )
        return PaymentTransactionResponse.model_validate(transaction)

    return await asyncio.to_thread(_verify)


@router.post("/failure", response_model=PaymentFailureResponse)
async def report_payment_failure(
    payload: PaymentFailureRequest,
    reconciler: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> PaymentFailureResponse:
    count = await asyncio.to_thread(
        reconciler.handle_failed_payment,
        payload.order_id,
        payload.error_code,
        payload.error_description,
    )
    return PaymentFailureResponse(order_id=payload.order_id, failed_transactions=count)


@router.post("/refund", response_model=PaymentTransactionResponse)
async def refund_payment(
    payload: RefundRequest,
    consultant_id: str = Depends(get_current_consultant_id),
    reconciler: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> PaymentTransactionResponse:
    def _refund() -> PaymentTransactionResponse:
        transaction = reconciler.process_refund(
            payload.payment_id,
            amount=payload.amount,
            reason=payload.reason,
            consultant_id=consultant_id,
        )
        return PaymentTransactionResponse.model_validate(transaction)

    return await asyncio.to_thread(_refund)
