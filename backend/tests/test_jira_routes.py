import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
from fastapi import HTTPException
from starlette.requests import Request

from app.routes import jira as jira_routes
from app.routes.jira import (
    DefaultProjectRequest,
    jira_oauth_callback,
    jira_oauth_disconnect,
    jira_oauth_start,
    jira_oauth_status,
    jira_projects,
    jira_select_default_project,
)
from helpdesk.connection_store import InMemoryConnectionStore
from helpdesk.jira_oauth import JiraOAuthService


def _request(path: str = "/api/oauth/jira/start") -> Request:
    scope = {"type": "http", "method": "GET", "path": path, "headers": [], "query_string": b""}
    return Request(scope)


async def _fake_user(_request: Request) -> str:
    return "user-1"


def _provider(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/oauth/token":
        return httpx.Response(200, json={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600})
    return httpx.Response(
        200,
        json=[
            {"id": "cloud-1", "name": "Acme Support", "url": "https://acme.atlassian.net"},
            {"id": "cloud-2", "name": "Acme Engineering", "url": "https://acme-eng.atlassian.net"},
        ],
    )


def _install(monkeypatch, *, configured: bool = True) -> tuple[InMemoryConnectionStore, JiraOAuthService]:
    store = InMemoryConnectionStore()
    service = JiraOAuthService(
        store=store,
        client_id="client-id" if configured else None,
        client_secret="client-secret",
        redirect_uri="https://app.example.com/api/oauth/jira/callback",
        scope="read:jira-work write:jira-work offline_access",
        transport=httpx.MockTransport(_provider),
    )
    monkeypatch.setattr(jira_routes, "get_authenticated_user_id", _fake_user)
    monkeypatch.setattr(jira_routes, "get_jira_oauth", lambda: service)
    monkeypatch.setattr(jira_routes, "get_connection_store", lambda: store)
    monkeypatch.setattr(jira_routes, "get_settings", lambda: SimpleNamespace(frontend_url="https://app.example.com"))
    return store, service


def _start_state(response) -> str:
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


def test_start_redirects_to_atlassian(monkeypatch):
    store, _ = _install(monkeypatch)

    response = asyncio.run(jira_oauth_start(_request(), conversationId="conv-1"))

    location = response.headers["location"]
    assert location.startswith("https://auth.atlassian.com/authorize?")
    _, oauth_state = store.get_oauth_state(_start_state(response))
    assert oauth_state.conversation_id == "conv-1"


def test_start_without_configuration_is_500(monkeypatch):
    _install(monkeypatch, configured=False)
    try:
        asyncio.run(jira_oauth_start(_request(), conversationId=None))
    except HTTPException as exc:
        assert exc.status_code == 500
    else:
        assert False, "expected HTTPException"


def test_callback_success_then_replay_shows_invalid_page(monkeypatch):
    store, _ = _install(monkeypatch)
    state = _start_state(asyncio.run(jira_oauth_start(_request(), conversationId="conv-1")))

    first = asyncio.run(jira_oauth_callback(code="code-1", state=state))
    second = asyncio.run(jira_oauth_callback(code="code-1", state=state))

    assert first.status_code == 200
    assert b"Jira connected" in first.body
    assert b"Acme Support" in first.body
    assert store.get_connection("user-1").default_project.cloud_id == "cloud-1"
    assert second.status_code == 400
    assert b"Invalid or expired link" in second.body


def test_callback_expired_and_unknown_state_render_same_page(monkeypatch):
    store, _ = _install(monkeypatch)
    state = _start_state(asyncio.run(jira_oauth_start(_request(), conversationId=None)))
    _, oauth_state = store.get_oauth_state(state)
    oauth_state.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    store.put_oauth_state("user-1", oauth_state)

    expired = asyncio.run(jira_oauth_callback(code="code-1", state=state))
    unknown = asyncio.run(jira_oauth_callback(code="code-1", state="0" * 64))

    assert expired.status_code == unknown.status_code == 400
    assert expired.body == unknown.body


def test_callback_provider_error_page(monkeypatch):
    _install(monkeypatch)
    response = asyncio.run(jira_oauth_callback(code=None, state=None, error="access_denied"))
    assert response.status_code == 400
    assert b"Authorization was cancelled" in response.body


def test_status_projects_select_and_disconnect(monkeypatch):
    store, _ = _install(monkeypatch)
    state = _start_state(asyncio.run(jira_oauth_start(_request(), conversationId=None)))
    asyncio.run(jira_oauth_callback(code="code-1", state=state))

    status = asyncio.run(jira_oauth_status(_request("/api/oauth/jira/status")))
    assert status["connected"] is True
    assert status["defaultProject"]["name"] == "Acme Support"

    projects = asyncio.run(jira_projects(_request("/api/oauth/jira/projects")))
    assert [item["cloudId"] for item in projects["projects"]] == ["cloud-1", "cloud-2"]

    selected = asyncio.run(
        jira_select_default_project(DefaultProjectRequest(projectName="engineering"), _request("/api/oauth/jira/projects/default"))
    )
    assert selected["defaultProject"]["cloudId"] == "cloud-2"

    try:
        asyncio.run(jira_select_default_project(DefaultProjectRequest(projectName="payroll"), _request()))
    except HTTPException as exc:
        assert exc.status_code == 404
    else:
        assert False, "expected HTTPException"

    out = asyncio.run(jira_oauth_disconnect(_request("/api/oauth/jira/disconnect")))
    assert out == {"ok": True, "connected": False}
    assert store.get_connection("user-1") is None
    status = asyncio.run(jira_oauth_status(_request("/api/oauth/jira/status")))
    assert status == {"connected": False, "status": "not_connected"}


def test_select_project_requires_name(monkeypatch):
    _install(monkeypatch)
    try:
        asyncio.run(jira_select_default_project(DefaultProjectRequest(projectName="  "), _request()))
    except HTTPException as exc:
        assert exc.status_code == 400
    else:
        assert False, "expected HTTPException"
