from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from helpdesk.connection_store import ConnectionStore
from helpdesk.errors import TicketingError, TicketingErrorCode, TokenRefreshError
from helpdesk.jira_oauth import JiraOAuthService
from helpdesk.types import Connection, ConnectionStatus, JiraProject, TicketDraft, TicketRecord

logger = logging.getLogger(__name__)

JIRA_PRIORITY_NAMES = {
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "critical": "Highest",
    "urgent": "Highest",
}
# 1=Low, 2=Medium, 3=High, 4=Urgent
FRESHWORKS_PRIORITIES = {"low": 1, "medium": 2, "high": 3, "critical": 4, "urgent": 4}
FRESHWORKS_STATUS_OPEN = 2
FRESHWORKS_SOURCE_PORTAL = 2
FRESHWORKS_STATUS_NAMES = {2: "open", 3: "pending", 4: "resolved", 5: "closed"}
SUMMARY_MAX_LENGTH = 255

USER_MESSAGES = {
    TicketingErrorCode.NOT_CONNECTED: (
        "I couldn't create the ticket because your Jira account is not connected. "
        "Please connect Jira and ask me again."
    ),
    TicketingErrorCode.NO_PROJECT: (
        "I couldn't create the ticket because no Jira project is available for your account. "
        "Please check your Jira access or select a project."
    ),
    TicketingErrorCode.TOKEN_REFRESH_FAILED: (
        "I couldn't create the ticket because your Jira authorization has expired. "
        "Please reconnect your Jira account and try again."
    ),
    TicketingErrorCode.PROVIDER_HTTP_ERROR: (
        "The ticketing system rejected the request, so no ticket was created. "
        "Please try again later or contact support directly."
    ),
    TicketingErrorCode.PROVIDER_UNAVAILABLE: (
        "The ticketing system is not reachable right now, so no ticket was created. "
        "Please try again later or contact support directly."
    ),
}


def ticketing_error_message(error: TicketingError) -> str:
    return USER_MESSAGES.get(error.code, USER_MESSAGES[TicketingErrorCode.PROVIDER_HTTP_ERROR])


@dataclass
class ProviderTicket:
    key: str
    url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class TicketProvider(Protocol):
    name: str
    requires_connection: bool

    def default_project(self) -> JiraProject | None: ...

    async def create(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        draft: TicketDraft,
        user_id: str,
        conversation_id: str | None,
    ) -> ProviderTicket: ...

    async def get(self, *, connection: Connection | None, project: JiraProject, ticket_key: str) -> dict[str, Any]: ...

    async def update(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        ticket_key: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]: ...


def _raise_for_provider(response: httpx.Response, action: str) -> None:
    if response.status_code < 300:
        return
    logger.warning("ticket_provider %s failed status=%s body=%s", action, response.status_code, response.text[:500])
    raise TicketingError(
        TicketingErrorCode.PROVIDER_HTTP_ERROR,
        status_code=response.status_code,
        body=response.text,
    )


def _label(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-") or "general"


def _adf_document(text: str) -> dict[str, Any]:
    paragraphs = [chunk for chunk in (text or "").split("\n\n") if chunk.strip()] or [""]
    content = []
    for chunk in paragraphs:
        lines = chunk.split("\n")
        nodes: list[dict[str, Any]] = []
        for idx, line in enumerate(lines):
            if idx:
                nodes.append({"type": "hardBreak"})
            if line:
                nodes.append({"type": "text", "text": line})
        content.append({"type": "paragraph", "content": nodes})
    return {"type": "doc", "version": 1, "content": content}


class JiraTicketProvider:
    name = "jira"
    requires_connection = True

    def __init__(
        self,
        *,
        api_base_url: str = "https://api.atlassian.com",
        project_key: str | None = None,
        issue_type: str = "Task",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.project_key = (project_key or "").strip() or None
        self.issue_type = issue_type
        self.timeout = timeout
        self._transport = transport

    def default_project(self) -> JiraProject | None:
        return None

    def _site_url(self, project: JiraProject) -> str:
        return f"{self.api_base_url}/ex/jira/{project.cloud_id}/rest/api/3"

    def _headers(self, connection: Connection | None) -> dict[str, str]:
        token = connection.access_token if connection else ""
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, url: str, *, connection: Connection | None, action: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(connection), **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("jira %s transport_error error=%s", action, exc.__class__.__name__)
            raise TicketingError(TicketingErrorCode.PROVIDER_UNAVAILABLE) from exc
        _raise_for_provider(response, action)
        return response

    async def _resolve_project_key(self, connection: Connection | None, project: JiraProject) -> str:
        if self.project_key:
            return self.project_key
        response = await self._request(
            "GET",
            f"{self._site_url(project)}/project/search",
            connection=connection,
            action="project_search",
            params={"maxResults": 1, "orderBy": "key"},
        )
        values = (response.json() or {}).get("values") or []
        key = (values[0] or {}).get("key") if values else None
        if not key:
            raise TicketingError(TicketingErrorCode.NO_PROJECT)
        return str(key)

    async def create(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        draft: TicketDraft,
        user_id: str,
        conversation_id: str | None,
    ) -> ProviderTicket:
        project_key = await self._resolve_project_key(connection, project)
        fields: dict[str, Any] = {
            "project": {"key": project_key},
            "issuetype": {"name": self.issue_type},
            "summary": draft.title[:SUMMARY_MAX_LENGTH],
            "description": _adf_document(draft.description),
            "labels": [_label(draft.category), "ai-generated", "chat-support"],
        }
        priority_name = JIRA_PRIORITY_NAMES.get(draft.priority)
        if priority_name:
            fields["priority"] = {"name": priority_name}
        response = await self._request(
            "POST",
            f"{self._site_url(project)}/issue",
            connection=connection,
            action="create_issue",
            json={"fields": fields},
        )
        payload = response.json() or {}
        key = str(payload.get("key") or payload.get("id") or "")
        url = f"{project.url.rstrip('/')}/browse/{key}" if project.url and key else None
        return ProviderTicket(key=key, url=url, raw=payload)

    async def get(self, *, connection: Connection | None, project: JiraProject, ticket_key: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            f"{self._site_url(project)}/issue/{ticket_key}",
            connection=connection,
            action="get_issue",
            params={"fields": "summary,status,priority"},
        )
        payload = response.json() or {}
        fields = payload.get("fields") or {}
        return {
            "key": payload.get("key") or ticket_key,
            "title": fields.get("summary"),
            "status": (fields.get("status") or {}).get("name"),
            "priority": (fields.get("priority") or {}).get("name"),
            "url": f"{project.url.rstrip('/')}/browse/{ticket_key}" if project.url else None,
        }

    async def update(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        ticket_key: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if changes.get("title"):
            fields["summary"] = str(changes["title"])[:SUMMARY_MAX_LENGTH]
        if changes.get("description"):
            fields["description"] = _adf_document(str(changes["description"]))
        if changes.get("priority") in JIRA_PRIORITY_NAMES:
            fields["priority"] = {"name": JIRA_PRIORITY_NAMES[changes["priority"]]}
        if not fields:
            raise ValueError("no updatable ticket fields")
        await self._request(
            "PUT",
            f"{self._site_url(project)}/issue/{ticket_key}",
            connection=connection,
            action="update_issue",
            json={"fields": fields},
        )
        return {"key": ticket_key, "updated": sorted(fields)}


class FreshworksTicketProvider:
    name = "freshworks"
    requires_connection = False

    def __init__(
        self,
        *,
        domain: str | None,
        api_key: str | None,
        requester_email: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.domain = (domain or "").strip().removeprefix("https://").rstrip("/") or None
        self.api_key = api_key
        self.requester_email = requester_email
        self.timeout = timeout
        self._transport = transport

    def default_project(self) -> JiraProject | None:
        if not self.domain:
            return None
        return JiraProject(cloud_id=self.domain, name=self.domain, url=f"https://{self.domain}")

    async def _request(self, method: str, path: str, *, action: str, **kwargs) -> httpx.Response:
        if not self.domain or not self.api_key:
            logger.warning("freshworks %s skipped: credentials are not configured", action)
            raise TicketingError(TicketingErrorCode.PROVIDER_UNAVAILABLE)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"https://{self.domain}/api/v2{path}",
                    auth=(self.api_key, "X"),
                    headers={"Content-Type": "application/json"},
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            logger.warning("freshworks %s transport_error error=%s", action, exc.__class__.__name__)
            raise TicketingError(TicketingErrorCode.PROVIDER_UNAVAILABLE) from exc
        _raise_for_provider(response, action)
        return response

    async def create(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        draft: TicketDraft,
        user_id: str,
        conversation_id: str | None,
    ) -> ProviderTicket:
        payload: dict[str, Any] = {
            "subject": draft.title,
            "description": draft.description.replace("\n", "<br>"),
            "priority": FRESHWORKS_PRIORITIES.get(draft.priority, 2),
            "status": FRESHWORKS_STATUS_OPEN,
            "source": FRESHWORKS_SOURCE_PORTAL,
            "type": draft.category,
            "tags": ["ai-generated", "chat-support", f"user-{user_id}"],
        }
        if self.requester_email:
            payload["email"] = self.requester_email
        response = await self._request("POST", "/tickets", action="create_ticket", json=payload)
        data = response.json() or {}
        key = str(data.get("display_id") or data.get("id") or "")
        return ProviderTicket(key=key, url=f"https://{self.domain}/a/tickets/{key}" if key else None, raw=data)

    async def get(self, *, connection: Connection | None, project: JiraProject, ticket_key: str) -> dict[str, Any]:
        response = await self._request("GET", f"/tickets/{ticket_key}", action="get_ticket")
        data = response.json() or {}
        return {
            "key": str(data.get("display_id") or data.get("id") or ticket_key),
            "title": data.get("subject"),
            "status": FRESHWORKS_STATUS_NAMES.get(data.get("status"), str(data.get("status"))),
            "priority": data.get("priority"),
            "url": f"https://{self.domain}/a/tickets/{ticket_key}",
        }

    async def update(
        self,
        *,
        connection: Connection | None,
        project: JiraProject,
        ticket_key: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if changes.get("title"):
            payload["subject"] = str(changes["title"])
        if changes.get("description"):
            payload["description"] = str(changes["description"]).replace("\n", "<br>")
        if changes.get("priority") in FRESHWORKS_PRIORITIES:
            payload["priority"] = FRESHWORKS_PRIORITIES[changes["priority"]]
        if not payload:
            raise ValueError("no updatable ticket fields")
        await self._request("PUT", f"/tickets/{ticket_key}", action="update_ticket", json=payload)
        return {"key": ticket_key, "updated": sorted(payload)}


class TicketingGateway:
    def __init__(self, *, store: ConnectionStore, oauth: JiraOAuthService | None, provider: TicketProvider):
        self.store = store
        self.oauth = oauth
        self.provider = provider

    async def _resolve(self, user_id: str) -> tuple[Connection | None, JiraProject]:
        if not self.provider.requires_connection:
            project = self.provider.default_project()
            if project is None:
                raise TicketingError(TicketingErrorCode.NO_PROJECT)
            return None, project

        connection = self.store.get_connection(user_id)
        if not connection or connection.status != ConnectionStatus.CONNECTED:
            raise TicketingError(TicketingErrorCode.NOT_CONNECTED)
        project = connection.active_project()
        if project is None:
            raise TicketingError(TicketingErrorCode.NO_PROJECT)

        if connection.is_expired():
            if self.oauth is None:
                raise TicketingError(TicketingErrorCode.TOKEN_REFRESH_FAILED)
            try:
                connection = await self.oauth.refresh_connection(user_id, connection)
            except TokenRefreshError as exc:
                logger.warning("ticketing token_refresh_failed user_id=%s error=%s", user_id, exc)
                raise TicketingError(
                    TicketingErrorCode.TOKEN_REFRESH_FAILED,
                    status_code=exc.status_code,
                    body=exc.body,
                ) from exc
        return connection, project

    async def create_ticket(
        self,
        user_id: str,
        draft: TicketDraft,
        *,
        conversation_id: str | None = None,
    ) -> TicketRecord:
        """Submit a ticket and keep an audit record of it.

        Not idempotent: every call that reaches the provider creates a new
        provider ticket and a new audit record.
        """
        missing = [name for name in ("title", "description", "priority", "category") if not getattr(draft, name, None)]
        if missing:
            raise ValueError(f"missing ticket fields: {', '.join(missing)}")

        connection, project = await self._resolve(user_id)
        created = await self.provider.create(
            connection=connection,
            project=project,
            draft=draft,
            user_id=user_id,
            conversation_id=conversation_id,
        )
        record = TicketRecord(
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            category=draft.category,
            project=project.name,
            project_id=project.cloud_id,
            provider=self.provider.name,
            ticket_key=created.key or None,
            ticket_url=created.url,
        )
        self.store.add_ticket(user_id, record)
        logger.info(
            "ticket_created user_id=%s provider=%s project=%s key=%s",
            user_id,
            self.provider.name,
            project.name,
            record.ticket_key,
        )
        return record

    async def get_ticket(self, user_id: str, ticket_key: str) -> dict[str, Any]:
        connection, project = await self._resolve(user_id)
        return await self.provider.get(connection=connection, project=project, ticket_key=ticket_key)

    async def update_ticket(self, user_id: str, ticket_key: str, changes: dict[str, Any]) -> dict[str, Any]:
        connection, project = await self._resolve(user_id)
        return await self.provider.update(connection=connection, project=project, ticket_key=ticket_key, changes=changes)

    def list_tickets(self, user_id: str, limit: int = 50) -> list[TicketRecord]:
        return self.store.list_tickets(user_id, limit=limit)
