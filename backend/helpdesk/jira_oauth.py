"""Atlassian OAuth 2.0 (3LO) authorization-code flow with PKCE.

The handshake is split across two requests: ``start`` runs inside the user's
authenticated session and stores a short-lived ``OAuthState``; ``handle_callback``
runs when the identity provider redirects the browser back, anonymously, so the
stored state is the only link back to the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from app.core.state import build_oauth_state, is_state_expired
from helpdesk.connection_store import ConnectionStore, project_to_dict
from helpdesk.errors import OAuthFlowError, TokenRefreshError
from helpdesk.types import Connection, ConnectionStatus, JiraProject, utcnow

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


@dataclass
class CallbackResult:
    user_id: str
    connection: Connection
    conversation_id: str | None = None


def _clip(value: str | None, size: int = 10) -> str:
    text = value or ""
    return f"{text[:size]}..." if len(text) > size else text


def _expires_at(payload: dict[str, Any], now: datetime) -> datetime:
    try:
        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
    except (TypeError, ValueError):
        expires_in = DEFAULT_EXPIRES_IN_SECONDS
    return now + timedelta(seconds=expires_in)


def _error_code(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    return str(payload.get("error") or "").strip().lower()


class JiraOAuthService:
    def __init__(
        self,
        *,
        store: ConnectionStore,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        scope: str,
        audience: str = "api.atlassian.com",
        authorize_url: str = "https://auth.atlassian.com/authorize",
        token_url: str = "https://auth.atlassian.com/oauth/token",
        api_base_url: str = "https://api.atlassian.com",
        state_ttl_seconds: int = 900,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.audience = audience
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.api_base_url = api_base_url.rstrip("/")
        self.state_ttl_seconds = state_ttl_seconds
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings,
        store: ConnectionStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "JiraOAuthService":
        return cls(
            store=store,
            client_id=settings.jira_client_id,
            client_secret=settings.jira_client_secret,
            redirect_uri=settings.jira_redirect_uri,
            scope=settings.jira_scope,
            audience=settings.jira_audience,
            authorize_url=settings.jira_authorize_url,
            token_url=settings.jira_token_url,
            api_base_url=settings.jira_api_base_url,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def start(self, user_id: str, conversation_id: str | None = None) -> str:
        oauth_state = build_oauth_state(conversation_id=conversation_id, ttl_seconds=self.state_ttl_seconds)
        self.store.put_oauth_state(user_id, oauth_state)
        logger.info("jira_oauth_start user_id=%s conversation_id=%s", user_id, conversation_id or "-")
        query = urlencode(
            {
                "audience": self.audience,
                "client_id": self.client_id,
                "scope": self.scope,
                "redirect_uri": self.redirect_uri,
                "state": oauth_state.state,
                "response_type": "code",
                "prompt": "consent",
                "code_challenge": oauth_state.code_challenge,
                "code_challenge_method": "S256",
            }
        )
        return f"{self.authorize_url}?{query}"

    async def handle_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> CallbackResult:
        found = self.store.get_oauth_state(state) if state else None
        if found:
            # Consumed on first sight, whatever the outcome.
            self.store.delete_oauth_state(found[0])

        if error:
            logger.warning("jira_oauth_callback provider_error error=%s", error)
            raise OAuthFlowError("provider_error", error)
        if not code or not state:
            raise OAuthFlowError("missing_params")
        if not found:
            logger.warning("jira_oauth_callback unknown_state state=%s", _clip(state))
            raise OAuthFlowError("invalid_state")

        user_id, oauth_state = found
        if is_state_expired(oauth_state):
            logger.warning("jira_oauth_callback expired_state user_id=%s expires_at=%s", user_id, oauth_state.expires_at)
            raise OAuthFlowError("invalid_state")

        token_data = await self.exchange_code(code, oauth_state.code_verifier)
        access_token = token_data.get("access_token")
        if not access_token:
            raise OAuthFlowError("exchange_failed", "missing access_token")

        projects = await self.fetch_accessible_resources(access_token)
        if not projects:
            logger.warning("jira_oauth_callback no_resources user_id=%s", user_id)
            raise OAuthFlowError("no_resources")

        now = utcnow()
        connection = self.store.put_connection(
            user_id,
            Connection(
                status=ConnectionStatus.CONNECTED,
                access_token=access_token,
                refresh_token=token_data.get("refresh_token"),
                expires_at=_expires_at(token_data, now),
                scope=str(token_data.get("scope") or self.scope),
                available_projects=projects,
                default_project=projects[0],
                connected_at=now,
            ),
        )
        logger.info("jira_oauth_callback ok user_id=%s projects=%s", user_id, len(projects))
        return CallbackResult(user_id=user_id, connection=connection, conversation_id=oauth_state.conversation_id)

    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    data={
                        "grant_type": "authorization_code",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "code_verifier": code_verifier,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("jira_token_exchange transport_error error=%s", exc.__class__.__name__)
            raise OAuthFlowError("exchange_failed", exc.__class__.__name__) from exc

        if response.status_code >= 400:
            logger.warning(
                "jira_token_exchange failed status=%s code=%s body=%s",
                response.status_code,
                _clip(code),
                response.text[:300],
            )
            if _error_code(response) == "invalid_grant":
                raise OAuthFlowError("code_already_used")
            raise OAuthFlowError("exchange_failed", f"http_{response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise OAuthFlowError("exchange_failed", "invalid_json") from exc

    async def fetch_accessible_resources(self, access_token: str) -> list[JiraProject]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.api_base_url}/oauth/token/accessible-resources",
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise OAuthFlowError("resources_failed", exc.__class__.__name__) from exc
        if response.status_code >= 400:
            logger.warning("jira_accessible_resources failed status=%s", response.status_code)
            raise OAuthFlowError("resources_failed", f"http_{response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthFlowError("resources_failed", "invalid_json") from exc
        if not isinstance(payload, list):
            return []
        return [
            JiraProject(
                cloud_id=str(item.get("id") or ""),
                name=str(item.get("name") or ""),
                url=str(item.get("url") or ""),
                avatar_url=item.get("avatarUrl"),
                scopes=list(item.get("scopes") or []),
            )
            for item in payload
            if isinstance(item, dict) and item.get("id")
        ]

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    data={
                        "grant_type": "refresh_token",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                    },
                )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"token refresh transport error: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            logger.warning("jira_token_refresh failed status=%s body=%s", response.status_code, response.text[:300])
            raise TokenRefreshError("token refresh failed", status_code=response.status_code, body=response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError("token refresh returned invalid json") from exc
        if not payload.get("access_token"):
            raise TokenRefreshError("token refresh returned no access_token")
        return payload

    async def refresh_connection(
        self,
        user_id: str,
        connection: Connection,
        *,
        scope: str | None = None,
        available_projects: list[JiraProject] | None = None,
    ) -> Connection:
        if not connection.refresh_token:
            raise TokenRefreshError("access token expired and no refresh token is stored")
        payload = await self.refresh_access_token(connection.refresh_token)
        now = utcnow()
        refreshed = self.store.put_connection(
            user_id,
            Connection(
                status=ConnectionStatus.CONNECTED,
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token") or connection.refresh_token,
                expires_at=_expires_at(payload, now),
                scope=connection.scope if scope is None else scope,
                available_projects=list(connection.available_projects if available_projects is None else available_projects),
                default_project=connection.default_project,
                connected_at=connection.connected_at,
            ),
        )
        logger.info("jira_token_refresh ok user_id=%s", user_id)
        return refreshed

    def is_connected(self, user_id: str) -> bool:
        connection = self.store.get_connection(user_id)
        if not connection or connection.status != ConnectionStatus.CONNECTED or not connection.access_token:
            return False
        return not connection.is_expired() or bool(connection.refresh_token)

    async def connection_status(self, user_id: str) -> dict[str, Any]:
        connection = self.store.get_connection(user_id)
        if not connection:
            return {"connected": False, "status": "not_connected"}

        if connection.status == ConnectionStatus.CONNECTED and connection.is_expired() and connection.refresh_token:
            try:
                connection = await self.refresh_connection(user_id, connection)
            except Exception:
                # Report the stored, expired connection instead of failing the status query.
                logger.exception("jira_status inline refresh failed user_id=%s", user_id)

        expired = connection.is_expired()
        return {
            "connected": connection.status == ConnectionStatus.CONNECTED and not expired,
            "status": "expired" if expired else str(connection.status),
            "availableProjects": [project_to_dict(item) for item in connection.available_projects],
            "defaultProject": project_to_dict(connection.default_project) if connection.default_project else None,
            "expiresAt": connection.expires_at.isoformat() if connection.expires_at else None,
        }

    def select_project(self, user_id: str, project_name: str) -> JiraProject | None:
        selected = self.store.update_default_project(user_id, project_name)
        if selected:
            logger.info("jira_project_selected user_id=%s cloud_id=%s", user_id, selected.cloud_id)
        return selected

    def disconnect(self, user_id: str) -> None:
        self.store.delete_connection(user_id)
        self.store.delete_oauth_state(user_id)
        logger.info("jira_disconnect user_id=%s", user_id)
