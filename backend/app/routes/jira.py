from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from app.core.auth import get_authenticated_user_id
from app.core.config import get_settings
from app.core.services import get_connection_store, get_jira_oauth
from app.routes.oauth_pages import render_error_page, render_success_page
from helpdesk.connection_store import project_to_dict
from helpdesk.errors import OAuthFlowError

router = APIRouter(prefix="/api/oauth/jira", tags=["jira-oauth"])
logger = logging.getLogger(__name__)


class DefaultProjectRequest(BaseModel):
    projectName: str | None = None


def _require_configured():
    oauth = get_jira_oauth()
    if not oauth.is_configured:
        raise HTTPException(status_code=500, detail="Jira OAuth settings are missing.")
    return oauth


async def _authorization_url(request: Request, conversation_id: str | None) -> str:
    oauth = _require_configured()
    user_id = await get_authenticated_user_id(request)
    return oauth.start(user_id, conversation_id=(conversation_id or "").strip() or None)


@router.get("/start")
async def jira_oauth_start(request: Request, conversationId: str | None = None):
    auth_url = await _authorization_url(request, conversationId)
    return RedirectResponse(url=auth_url, status_code=302)


@router.post("/start")
async def jira_oauth_start_url(request: Request, conversationId: str | None = None):
    auth_url = await _authorization_url(request, conversationId)
    return {"ok": True, "auth_url": auth_url}


@router.get("/callback")
async def jira_oauth_callback(code: str | None = None, state: str | None = None, error: str | None = None):
    origin = get_settings().frontend_url
    oauth = get_jira_oauth()
    if not oauth.is_configured:
        return render_error_page("not_configured", origin=origin)
    try:
        result = await oauth.handle_callback(code=code, state=state, error=error)
    except OAuthFlowError as exc:
        logger.warning("jira_oauth_callback rejected reason=%s detail=%s", exc.reason, exc.detail)
        return render_error_page(exc.reason, origin=origin)
    except Exception:
        logger.exception("jira_oauth_callback failed")
        return render_error_page("unexpected", origin=origin)

    project = result.connection.active_project()
    return render_success_page(
        project_name=project.name if project else "Jira",
        conversation_id=result.conversation_id,
        origin=origin,
    )


@router.post("/status")
async def jira_oauth_status(request: Request):
    user_id = await get_authenticated_user_id(request)
    return await get_jira_oauth().connection_status(user_id)


@router.get("/projects")
async def jira_projects(request: Request):
    user_id = await get_authenticated_user_id(request)
    connection = get_connection_store().get_connection(user_id)
    if not connection:
        raise HTTPException(status_code=404, detail={"message": "Jira is not connected.", "code": "not_connected"})
    active = connection.active_project()
    return {
        "projects": [project_to_dict(item) for item in connection.available_projects],
        "defaultProject": project_to_dict(active) if active else None,
    }


@router.post("/projects/default")
async def jira_select_default_project(body: DefaultProjectRequest, request: Request):
    user_id = await get_authenticated_user_id(request)
    project_name = (body.projectName or "").strip()
    if not project_name:
        raise HTTPException(status_code=400, detail={"message": "projectName is required.", "code": "INVALID_REQUEST"})
    selected = get_jira_oauth().select_project(user_id, project_name)
    if selected is None:
        raise HTTPException(
            status_code=404,
            detail={"message": f"No Jira project matches '{project_name}'.", "code": "no_project"},
        )
    return {"ok": True, "defaultProject": project_to_dict(selected)}


@router.delete("/disconnect")
async def jira_oauth_disconnect(request: Request):
    user_id = await get_authenticated_user_id(request)
    get_jira_oauth().disconnect(user_id)
    return {"ok": True, "connected": False}
