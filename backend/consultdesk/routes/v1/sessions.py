# backend/consultdesk/routes/v1/sessions.py
"""
Consultant session routes - API v1

    POST   /sessions              → Create a session for an existing client
    PUT    /sessions/{session_id} → Edit / reschedule a session
    DELETE /sessions/{session_id} → Cancel a session
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...dependencies import get_booking_service, get_current_consultant_id
from ...schemas.booking import SessionCreate, SessionResponse, SessionUpdate
from ...services.booking_service import BookingService

router = APIRouter(tags=["sessions-v1"])


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    consultant_id: str = Depends(get_current_consultant_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    def _create() -> SessionResponse:
        return SessionResponse.model_validate(
            booking_service.create_session(consultant_id, payload)
        )

    return await asyncio.to_thread(_create)


@router.put("/sessions/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    consultant_id: str = Depends(get_current_consultant_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    def _update() -> SessionResponse:
        return SessionResponse.model_validate(
            booking_service.reschedule_session(consultant_id, session_id, payload)
        )

    return await asyncio.to_thread(_update)


@router.delete("/sessions/{session_id}", response_model=SessionResponse)
async def cancel_session(
    session_id: str,
    reason: Optional[str] = Query(None, max_length=1000),
    consultant_id: str = Depends(get_current_consultant_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    def _cancel() -> SessionResponse:
        return SessionResponse.model_validate(
            booking_service.cancel_session(consultant_id, session_id, reason)
        )

    return await asyncio.to_thread(_cancel)
