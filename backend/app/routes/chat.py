from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from app.core.auth import get_authenticated_user_id
from app.core.services import get_session_orchestrator
from helpdesk.errors import ConcurrentUpdateError

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    conversationId: str | None = None
    message: str | None = None
    ticketPermission: bool | None = None


@router.post("/chat")
async def chat(body: ChatRequest, request: Request):
    user_id = await get_authenticated_user_id(request)
    conversation_id = (body.conversationId or "").strip()
    message = (body.message or "").strip()
    if not conversation_id or not message:
        raise HTTPException(
            status_code=400,
            detail={"message": "conversationId and message are required.", "code": "INVALID_REQUEST"},
        )

    orchestrator = get_session_orchestrator()
    try:
        return await orchestrator.handle_message(
            user_id=user_id,
            conversation_id=conversation_id,
            message=message,
            ticket_permission=body.ticketPermission,
        )
    except ConcurrentUpdateError as exc:
        logger.warning("chat conflict conversation_id=%s error=%s", conversation_id, exc)
        raise HTTPException(
            status_code=409,
            detail={
                "message": "This conversation was updated by another request. Please resend your message.",
                "code": "CONVERSATION_CONFLICT",
            },
        ) from exc
