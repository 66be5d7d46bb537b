"""
Outbound Message Endpoints.

Direct sends through the gateway and additions to the scheduled queue.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from app.core.messaging import get_message_queue, parse_scheduled_at
from app.core.phone import digits_only
from app.infra.messaging import MessagingError, get_outbound_messenger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["Messages"])


class SendRequest(BaseModel):
    """Immediate send."""

    number: str = Field(..., min_length=3, max_length=50, examples=["573001234567"])
    message: str = Field(..., min_length=1, max_length=4096)
    media_url: Optional[str] = Field(default=None, max_length=500)


class ScheduleRequest(SendRequest):
    """Queued send."""

    scheduled_at: str = Field(
        ...,
        description="DD/MM/YYYY HH:MM[:SS] or ISO 8601, in the configured zone",
        examples=["24/10/2026 08:30"],
    )

    @field_validator("scheduled_at")
    @classmethod
    def validate_scheduled_at(cls, v: str) -> str:
        if parse_scheduled_at(v) is None:
            raise ValueError("Unrecognized date/time")
        return v.strip()


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Send a message now",
    responses={502: {"description": "Gateway did not accept the message"}},
)
async def send_message(request: SendRequest) -> dict:
    """Deliver one message immediately."""
    destination = digits_only(request.number)

    try:
        await get_outbound_messenger().deliver(destination, request.message, request.media_url)
    except MessagingError as e:
        logger.error(f"Direct send to {destination} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Message could not be delivered",
        )

    return {"status": "sent", "number": destination}


@router.post(
    "/scheduled",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Queue a message",
)
async def schedule_message(request: ScheduleRequest) -> dict:
    """Add a pending row to the send queue."""
    message_id = await get_message_queue().enqueue(
        destination=request.number,
        text=request.message,
        scheduled_at=request.scheduled_at,
        media_url=request.media_url,
    )
    return {"status": "queued", "id": message_id}
