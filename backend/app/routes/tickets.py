from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from app.core.auth import get_authenticated_user_id
from app.core.services import get_ticketing_gateway
from helpdesk.errors import TicketingError, TicketingErrorCode
from helpdesk.ticketing import ticketing_error_message
from helpdesk.types import TicketRecord

router = APIRouter(prefix="/api/tickets", tags=["tickets"])
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    TicketingErrorCode.NOT_CONNECTED: 409,
    TicketingErrorCode.NO_PROJECT: 409,
    TicketingErrorCode.TOKEN_REFRESH_FAILED: 409,
    TicketingErrorCode.PROVIDER_HTTP_ERROR: 502,
    TicketingErrorCode.PROVIDER_UNAVAILABLE: 503,
}


class TicketUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = None


def _ticket_payload(ticket: TicketRecord) -> dict:
    return {
        "id": ticket.id,
        "title": ticket.title,
        "priority": ticket.priority,
        "category": ticket.category,
        "project": ticket.project,
        "projectId": ticket.project_id,
        "status": str(ticket.status),
        "provider": ticket.provider,
        "ticketKey": ticket.ticket_key,
        "ticketUrl": ticket.ticket_url,
        "createdAt": ticket.created_at.isoformat(),
    }


def _ticketing_http_error(exc: TicketingError) -> HTTPException:
    if exc.status_code is not None:
        logger.warning("ticket_provider_error code=%s status=%s body=%s", exc.code, exc.status_code, (exc.body or "")[:500])
    return HTTPException(
        status_code=_ERROR_STATUS.get(exc.code, 502),
        detail={"message": ticketing_error_message(exc), "code": str(exc.code)},
    )


@router.get("")
async def list_tickets(request: Request, limit: int = Query(50, ge=1, le=200)):
    user_id = await get_authenticated_user_id(request)
    tickets = get_ticketing_gateway().list_tickets(user_id, limit=limit)
    return {"ok": True, "count": len(tickets), "tickets": [_ticket_payload(item) for item in tickets]}


@router.get("/{ticket_key}")
async def get_ticket(ticket_key: str, request: Request):
    user_id = await get_authenticated_user_id(request)
    try:
        ticket = await get_ticketing_gateway().get_ticket(user_id, ticket_key)
    except TicketingError as exc:
        raise _ticketing_http_error(exc) from exc
    return {"ok": True, "ticket": ticket}


@router.patch("/{ticket_key}")
async def update_ticket(ticket_key: str, body: TicketUpdateRequest, request: Request):
    user_id = await get_authenticated_user_id(request)
    changes = {key: value for key, value in body.model_dump().items() if value}
    if not changes:
        raise HTTPException(
            status_code=400,
            detail={"message": "Provide a title, description or priority to update.", "code": "INVALID_REQUEST"},
        )
    try:
        result = await get_ticketing_gateway().update_ticket(user_id, ticket_key, changes)
    except TicketingError as exc:
        raise _ticketing_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"message": str(exc), "code": "INVALID_REQUEST"}) from exc
    return {"ok": True, **result}
