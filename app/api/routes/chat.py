"""
Chat API Endpoint.

Receives inbound WhatsApp messages (forwarded by the gateway) and returns the
assistant's reply. One request is one dialogue turn for one contact.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from app.core.scheduling import EngineResponse, get_dialogue_engine, get_directory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Inbound message."""

    contact_id: str = Field(
        ...,
        min_length=3,
        max_length=50,
        description="Sender's phone number",
        examples=["573001234567"],
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Message text",
        examples=["agendar cita"],
    )


class ChatResponse(BaseModel):
    """Assistant reply."""

    reply: Optional[str] = Field(
        default=None,
        description="Text to send back (absent when the contact is ignored)",
    )
    state: Optional[str] = Field(
        default=None,
        description="Dialogue state after this turn",
    )
    contact_id: str = Field(
        ...,
        description="Contact the reply is for",
    )
    appointment_id: Optional[int] = Field(
        default=None,
        description="Ledger id if this turn completed a booking",
    )
    ignored: bool = Field(
        default=False,
        description="True when the contact is blacklisted and no reply is sent",
    )


class BlacklistRequest(BaseModel):
    """Blacklist change."""

    contact_id: str = Field(..., min_length=3, max_length=50)
    intent: str = Field(..., pattern="^(add|remove)$", examples=["add"])
    reason: Optional[str] = Field(default=None, max_length=500)


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Process one inbound message and get the assistant's reply.",
    responses={
        200: {"description": "Successful response"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Process a chat message.

    - Blacklisted contacts are acknowledged without a reply
    - Everything else is one turn of the dialogue engine
    """
    try:
        if await get_directory().is_blacklisted(request.contact_id):
            logger.info(f"Ignoring blacklisted contact {request.contact_id}")
            return ChatResponse(contact_id=request.contact_id, ignored=True)

        response: EngineResponse = await get_dialogue_engine().process(
            contact_id=request.contact_id,
            message=request.message,
        )

        return ChatResponse(
            reply=response.message,
            state=response.state.value,
            contact_id=response.contact_id,
            appointment_id=response.appointment_id,
        )

    except Exception as e:
        logger.exception(f"Error processing chat message: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process message",
        )


@router.get(
    "/session/{contact_id}",
    response_model=dict,
    summary="Get session data",
    description="Retrieve the current state of a contact's conversation.",
)
async def get_session(contact_id: str) -> dict:
    """Get session information."""
    session = await get_dialogue_engine().get_session(contact_id)

    return {
        "contact_id": session.contact_id,
        "state": session.state.value,
        "draft": session.draft.to_dict(),
        "cancellation": session.cancellation.to_dict(),
        "last_activity": session.last_activity.isoformat() if session.last_activity else None,
        "message_count": len(session.history),
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
    }


@router.delete(
    "/session/{contact_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset a session",
    description="Force a contact's conversation back to idle.",
)
async def reset_session(contact_id: str) -> None:
    """Reset session to initial state."""
    await get_dialogue_engine().reset_session(contact_id)


@router.post(
    "/blacklist",
    response_model=dict,
    summary="Update the blacklist",
    description="Add or remove a contact the assistant never answers.",
)
async def update_blacklist(request: BlacklistRequest) -> dict:
    """Add or remove a blacklisted number."""
    directory = get_directory()

    if request.intent == "add":
        changed = await directory.add_to_blacklist(request.contact_id, request.reason)
    else:
        changed = await directory.remove_from_blacklist(request.contact_id) > 0

    return {
        "status": "ok",
        "contact_id": request.contact_id,
        "intent": request.intent,
        "changed": changed,
    }
