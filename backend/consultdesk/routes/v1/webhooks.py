# backend/consultdesk/routes/v1/webhooks.py
"""
Razorpay webhook endpoint (v1).

Mounted under /api/v1/webhooks/razorpay. No authentication: the delivery is
authenticated by the ``x-razorpay-signature`` HMAC over the raw body.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ...dependencies import get_webhook_service
from ...errors import problem_response
from ...schemas.webhook import WebhookAckResponse
from ...services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_MAX_WEBHOOK_BODY_BYTES = 1_048_576


@router.post("/razorpay", response_model=WebhookAckResponse)
async def razorpay_webhook(
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> WebhookAckResponse | JSONResponse:
    raw_body = await request.body()
    if len(raw_body) > _MAX_WEBHOOK_BODY_BYTES:
        logger.warning("Rejected oversized webhook body (%d bytes)", len(raw_body))
        return problem_response(
            request,
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "Payload too large",
            code="PAYLOAD_TOO_LARGE",
        )

    # WebhookInProgressException renders as 503 with Retry-After
    outcome = await asyncio.to_thread(
        webhook_service.process_webhook_event,
        raw_body,
        request.headers.get("x-razorpay-signature"),
        dict(request.headers),
    )
    return WebhookAckResponse(ok=True, status=outcome.status)
