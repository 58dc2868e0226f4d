# backend/consultdesk/routes/v1/booking.py
"""
Public booking route - API v1

    POST /book    → Book a session from a consultant's public page
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, status

from ...dependencies import get_booking_service
from ...schemas.booking import BookingResponse, ClientSummary, PublicBookingRequest, SessionResponse
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["booking-v1"])


@router.post("/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_session(
    payload: PublicBookingRequest,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Book a session without an account.

    The client record is found or created by email. When the consultant's
    meeting account is not connected the booking still succeeds and
    ``meeting_deferred`` is true; the link is created once payment completes.
    """

    def _book() -> BookingResponse:
        result = booking_service.book_session(payload)
        return BookingResponse(
            client=ClientSummary.model_validate(result.client),
            session=SessionResponse.model_validate(result.session),
            meeting_deferred=result.meeting_deferred,
        )

    return await asyncio.to_thread(_book)
