import asyncio
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from helpdesk.connection_store import InMemoryConnectionStore
from helpdesk.errors import OAuthFlowError, TokenRefreshError
from helpdesk.jira_oauth import JiraOAuthService
from helpdesk.types import Connection, ConnectionStatus, JiraProject

RESOURCES = [
    {"id": "cloud-1", "name": "Acme Support", "url": "https://acme.atlassian.net", "scopes": ["write:jira-work"]},
    {"id": "cloud-2", "name": "Acme Engineering", "url": "https://acme-eng.atlassian.net", "scopes": []},
]


class _Provider:
    """Fake Atlassian token and resource endpoints."""

    def __init__(self, *, token_status=200, token_body=None, resources=None, refresh_body=None):
        self.token_status = token_status
        self.token_body = token_body if token_body is not None else {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": "read:jira-work write:jira-work offline_access",
        }
        self.resources = RESOURCES if resources is None else resources
        self.refresh_body = refresh_body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/token":
            form = parse_qs(request.content.decode())
            if form["grant_type"] == ["refresh_token"]:
                if self.refresh_body is None:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                return httpx.Response(200, json=self.refresh_body)
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path == "/oauth/token/accessible-resources":
            return httpx.Response(200, json=self.resources)
        return httpx.Response(404, json={})


def _service(store, provider) -> JiraOAuthService:
    return JiraOAuthService(
        store=store,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="https://app.example.com/api/oauth/jira/callback",
        scope="read:jira-work write:jira-work offline_access",
        token_url="https://auth.atlassian.com/oauth/token",
        api_base_url="https://api.atlassian.com",
        transport=httpx.MockTransport(provider),
    )


def _state_from(auth_url: str) -> str:
    return parse_qs(urlparse(auth_url).query)["state"][0]


def test_start_builds_pkce_authorization_url():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider())

    auth_url = service.start("user-1", conversation_id="conv-1")

    parsed = urlparse(auth_url)
    query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://auth.atlassian.com/authorize"
    assert query["audience"] == "api.atlassian.com"
    assert query["client_id"] == "client-id"
    assert query["response_type"] == "code"
    assert query["prompt"] == "consent"
    assert query["code_challenge_method"] == "S256"
    user_id, oauth_state = store.get_oauth_state(query["state"])
    assert user_id == "user-1"
    assert oauth_state.code_challenge == query["code_challenge"]
    assert oauth_state.conversation_id == "conv-1"


def test_callback_persists_connection_and_consumes_state():
    store = InMemoryConnectionStore()
    provider = _Provider()
    service = _service(store, provider)
    state = _state_from(service.start("user-1", conversation_id="conv-1"))
    _, oauth_state = store.get_oauth_state(state)

    result = asyncio.run(service.handle_callback(code="code-1", state=state))

    assert result.user_id == "user-1"
    assert result.conversation_id == "conv-1"
    connection = store.get_connection("user-1")
    assert connection.status == ConnectionStatus.CONNECTED
    assert connection.access_token == "access-1"
    assert connection.default_project.cloud_id == "cloud-1"
    assert [item.name for item in connection.available_projects] == ["Acme Support", "Acme Engineering"]
    assert store.get_oauth_state(state) is None

    token_form = parse_qs(provider.requests[0].content.decode())
    assert token_form["grant_type"] == ["authorization_code"]
    assert token_form["code_verifier"] == [oauth_state.code_verifier]
    assert provider.requests[1].headers["authorization"] == "Bearer access-1"


def test_second_callback_with_consumed_state_is_invalid_state():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider())
    state = _state_from(service.start("user-1"))
    asyncio.run(service.handle_callback(code="code-1", state=state))

    with pytest.raises(OAuthFlowError) as excinfo:
        asyncio.run(service.handle_callback(code="code-1", state=state))
    assert excinfo.value.reason == "invalid_state"


def test_expired_and_unknown_state_are_rejected_identically():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider())
    state = _state_from(service.start("user-1"))
    _, oauth_state = store.get_oauth_state(state)
    oauth_state.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    store.put_oauth_state("user-1", oauth_state)

    with pytest.raises(OAuthFlowError) as expired:
        asyncio.run(service.handle_callback(code="code-1", state=state))
    with pytest.raises(OAuthFlowError) as unknown:
        asyncio.run(service.handle_callback(code="code-1", state="f" * 64))

    assert expired.value.reason == unknown.value.reason == "invalid_state"
    assert str(expired.value) == str(unknown.value)
    assert store.get_connection("user-1") is None


def test_provider_error_and_missing_params():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider())
    state = _state_from(service.start("user-1"))

    with pytest.raises(OAuthFlowError) as denied:
        asyncio.run(service.handle_callback(code=None, state=state, error="access_denied"))
    assert denied.value.reason == "provider_error"
    assert store.get_oauth_state(state) is None

    with pytest.raises(OAuthFlowError) as missing:
        asyncio.run(service.handle_callback(code=None, state=None))
    assert missing.value.reason == "missing_params"


def test_code_already_used_is_reported_gracefully():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(token_status=400, token_body={"error": "invalid_grant"}))
    state = _state_from(service.start("user-1"))

    with pytest.raises(OAuthFlowError) as excinfo:
        asyncio.run(service.handle_callback(code="code-1", state=state))
    assert excinfo.value.reason == "code_already_used"


def test_no_accessible_resources_rejects_connection():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(resources=[]))
    state = _state_from(service.start("user-1"))

    with pytest.raises(OAuthFlowError) as excinfo:
        asyncio.run(service.handle_callback(code="code-1", state=state))
    assert excinfo.value.reason == "no_resources"
    assert store.get_connection("user-1") is None


class _BrokenResourcesProvider(_Provider):
    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token/accessible-resources":
            self.requests.append(request)
            return httpx.Response(200, content=b"<html>gateway timeout</html>")
        return super().__call__(request)


def test_unparseable_resources_body_is_resources_failed():
    store = InMemoryConnectionStore()
    service = _service(store, _BrokenResourcesProvider())
    state = _state_from(service.start("user-1"))

    with pytest.raises(OAuthFlowError) as excinfo:
        asyncio.run(service.handle_callback(code="code-1", state=state))
    assert excinfo.value.reason == "resources_failed"
    assert excinfo.value.detail == "invalid_json"
    assert store.get_connection("user-1") is None


def _expired_connection(**overrides) -> Connection:
    projects = [JiraProject(cloud_id="cloud-1", name="Acme Support"), JiraProject(cloud_id="cloud-2", name="Acme Eng")]
    values = {
        "status": ConnectionStatus.CONNECTED,
        "access_token": "old-access",
        "refresh_token": "old-refresh",
        "expires_at": datetime.now(timezone.utc) - timedelta(minutes=5),
        "scope": "read:jira-work",
        "available_projects": projects,
        "default_project": projects[1],
    }
    values.update(overrides)
    return Connection(**values)


def test_refresh_reuses_refresh_token_and_keeps_project():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(refresh_body={"access_token": "new-access", "expires_in": 60}))
    connection = store.put_connection("user-1", _expired_connection())

    refreshed = asyncio.run(service.refresh_connection("user-1", connection))

    assert refreshed.access_token == "new-access"
    assert refreshed.refresh_token == "old-refresh"
    assert refreshed.scope == "read:jira-work"
    assert refreshed.default_project.cloud_id == "cloud-2"
    assert refreshed.is_expired() is False
    assert store.get_connection("user-1").access_token == "new-access"


def test_refresh_failure_raises_token_refresh_error():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(refresh_body=None))
    connection = store.put_connection("user-1", _expired_connection())

    with pytest.raises(TokenRefreshError) as excinfo:
        asyncio.run(service.refresh_connection("user-1", connection))
    assert excinfo.value.status_code == 400
    assert store.get_connection("user-1").access_token == "old-access"


def test_status_refreshes_inline():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(refresh_body={"access_token": "new-access", "refresh_token": "new-refresh"}))
    store.put_connection("user-1", _expired_connection())

    status = asyncio.run(service.connection_status("user-1"))

    assert status["connected"] is True
    assert status["status"] == "connected"
    assert status["defaultProject"]["cloudId"] == "cloud-2"
    assert store.get_connection("user-1").refresh_token == "new-refresh"


def test_status_failed_refresh_reports_expired_without_raising():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider(refresh_body=None))
    store.put_connection("user-1", _expired_connection())

    status = asyncio.run(service.connection_status("user-1"))

    assert status["connected"] is False
    assert status["status"] == "expired"
    assert len(status["availableProjects"]) == 2


def test_status_without_connection():
    service = _service(InMemoryConnectionStore(), _Provider())
    assert asyncio.run(service.connection_status("user-1")) == {"connected": False, "status": "not_connected"}


def test_select_project_and_disconnect():
    store = InMemoryConnectionStore()
    service = _service(store, _Provider())
    store.put_connection("user-1", _expired_connection(expires_at=None))
    state = _state_from(service.start("user-1"))

    assert service.select_project("user-1", "support").cloud_id == "cloud-1"
    assert service.is_connected("user-1") is True

    service.disconnect("user-1")
    assert store.get_connection("user-1") is None
    assert store.get_oauth_state(state) is None
    assert service.is_connected("user-1") is False


def test_token_request_payload_is_form_encoded():
    provider = _Provider()
    store = InMemoryConnectionStore()
    service = _service(store, provider)
    asyncio.run(service.exchange_code("code-1", "verifier-1"))

    request = provider.requests[0]
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert "code_verifier=verifier-1" in request.content.decode()
    with pytest.raises(json.JSONDecodeError):
        json.loads(request.content.decode())
