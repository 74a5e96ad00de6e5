from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Protocol

from app.security.token_vault import TokenVault
from helpdesk.types import (
    Connection,
    ConnectionStatus,
    JiraProject,
    OAuthState,
    TicketRecord,
    TicketStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

PROVIDER = "jira"


class ConnectionStore(Protocol):
    def get_connection(self, user_id: str) -> Connection | None: ...

    def put_connection(self, user_id: str, connection: Connection) -> Connection: ...

    def delete_connection(self, user_id: str) -> None: ...

    def update_default_project(self, user_id: str, project_name: str) -> JiraProject | None: ...

    def put_oauth_state(self, user_id: str, oauth_state: OAuthState) -> None: ...

    def get_oauth_state(self, state: str) -> tuple[str, OAuthState] | None: ...

    def delete_oauth_state(self, user_id: str) -> None: ...

    def purge_expired_oauth_states(self, now: datetime | None = None) -> int: ...

    def add_ticket(self, user_id: str, ticket: TicketRecord) -> TicketRecord: ...

    def list_tickets(self, user_id: str, limit: int = 50) -> list[TicketRecord]: ...


def find_project(projects: list[JiraProject], project_name: str) -> JiraProject | None:
    needle = (project_name or "").strip().lower()
    if not needle:
        return None
    for project in projects:
        if needle in project.name.lower():
            return project
    return None


def _prepare_connection(connection: Connection) -> Connection:
    prepared = copy.deepcopy(connection)
    prepared.ensure_default_project()
    prepared.updated_at = utcnow()
    if prepared.status == ConnectionStatus.CONNECTED and prepared.connected_at is None:
        prepared.connected_at = prepared.updated_at
    return prepared


class InMemoryConnectionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[str, Connection] = {}
        # One row per handshake keyed by state; the per-user view is derived.
        self._oauth_states: dict[str, tuple[str, OAuthState]] = {}
        self._tickets: dict[str, list[TicketRecord]] = {}

    def get_connection(self, user_id: str) -> Connection | None:
        with self._lock:
            item = self._connections.get(user_id)
            return copy.deepcopy(item) if item else None

    def put_connection(self, user_id: str, connection: Connection) -> Connection:
        prepared = _prepare_connection(connection)
        with self._lock:
            self._connections[user_id] = prepared
        return copy.deepcopy(prepared)

    def delete_connection(self, user_id: str) -> None:
        with self._lock:
            self._connections.pop(user_id, None)

    def update_default_project(self, user_id: str, project_name: str) -> JiraProject | None:
        with self._lock:
            connection = self._connections.get(user_id)
            if not connection:
                return None
            selected = find_project(connection.available_projects, project_name)
            if not selected:
                return None
            connection.default_project = selected
            connection.updated_at = utcnow()
            return copy.deepcopy(selected)

    def put_oauth_state(self, user_id: str, oauth_state: OAuthState) -> None:
        with self._lock:
            for key in [key for key, (owner, _) in self._oauth_states.items() if owner == user_id]:
                self._oauth_states.pop(key, None)
            self._oauth_states[oauth_state.state] = (user_id, copy.deepcopy(oauth_state))

    def get_oauth_state(self, state: str) -> tuple[str, OAuthState] | None:
        with self._lock:
            item = self._oauth_states.get(state)
            if not item:
                return None
            user_id, oauth_state = item
            return user_id, copy.deepcopy(oauth_state)

    def delete_oauth_state(self, user_id: str) -> None:
        with self._lock:
            for key in [key for key, (owner, _) in self._oauth_states.items() if owner == user_id]:
                self._oauth_states.pop(key, None)

    def purge_expired_oauth_states(self, now: datetime | None = None) -> int:
        current = now or utcnow()
        with self._lock:
            expired = [key for key, (_, item) in self._oauth_states.items() if item.expires_at < current]
            for key in expired:
                self._oauth_states.pop(key, None)
        return len(expired)

    def add_ticket(self, user_id: str, ticket: TicketRecord) -> TicketRecord:
        with self._lock:
            self._tickets.setdefault(user_id, []).append(copy.deepcopy(ticket))
        return ticket

    def list_tickets(self, user_id: str, limit: int = 50) -> list[TicketRecord]:
        with self._lock:
            rows = list(self._tickets.get(user_id, []))
        rows.sort(key=lambda item: item.created_at, reverse=True)
        return [copy.deepcopy(item) for item in rows[: max(1, limit)]]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def project_to_dict(project: JiraProject) -> dict[str, Any]:
    return {
        "cloudId": project.cloud_id,
        "name": project.name,
        "url": project.url,
        "avatarUrl": project.avatar_url,
        "scopes": list(project.scopes),
    }


def project_from_dict(payload: dict[str, Any]) -> JiraProject:
    return JiraProject(
        cloud_id=str(payload.get("cloudId") or payload.get("id") or ""),
        name=str(payload.get("name") or ""),
        url=str(payload.get("url") or ""),
        avatar_url=payload.get("avatarUrl"),
        scopes=list(payload.get("scopes") or []),
    )


def _connection_to_row(user_id: str, connection: Connection, vault: TokenVault) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "provider": PROVIDER,
        "status": str(connection.status),
        "access_token_encrypted": vault.encrypt(connection.access_token),
        "refresh_token_encrypted": vault.encrypt(connection.refresh_token),
        "expires_at": _iso(connection.expires_at),
        "scope": connection.scope,
        "available_projects": [project_to_dict(item) for item in connection.available_projects],
        "default_project": project_to_dict(connection.default_project) if connection.default_project else None,
        "connected_at": _iso(connection.connected_at),
        "updated_at": _iso(connection.updated_at),
        "reason": connection.reason,
    }


def _connection_from_row(row: dict[str, Any], vault: TokenVault) -> Connection | None:
    try:
        status = ConnectionStatus(str(row.get("status") or ""))
    except ValueError:
        logger.warning("connection_row invalid status=%s", row.get("status"))
        return None
    default_payload = row.get("default_project")
    return Connection(
        status=status,
        access_token=vault.decrypt(row.get("access_token_encrypted")),
        refresh_token=vault.decrypt(row.get("refresh_token_encrypted")),
        expires_at=_parse_datetime(row.get("expires_at")),
        scope=str(row.get("scope") or ""),
        available_projects=[
            project_from_dict(item) for item in (row.get("available_projects") or []) if isinstance(item, dict)
        ],
        default_project=project_from_dict(default_payload) if isinstance(default_payload, dict) else None,
        connected_at=_parse_datetime(row.get("connected_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
        reason=row.get("reason"),
    )


def _oauth_state_from_row(row: dict[str, Any]) -> OAuthState | None:
    expires_at = _parse_datetime(row.get("expires_at"))
    if not row.get("state") or not row.get("code_verifier") or expires_at is None:
        return None
    return OAuthState(
        state=str(row["state"]),
        code_verifier=str(row["code_verifier"]),
        code_challenge=str(row.get("code_challenge") or ""),
        conversation_id=row.get("conversation_id") or None,
        timestamp=_parse_datetime(row.get("created_at")) or expires_at,
        expires_at=expires_at,
    )


def ticket_to_row(user_id: str, ticket: TicketRecord) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "user_id": user_id,
        "title": ticket.title,
        "description": ticket.description,
        "priority": ticket.priority,
        "category": ticket.category,
        "project": ticket.project,
        "project_id": ticket.project_id,
        "status": str(ticket.status),
        "provider": ticket.provider,
        "ticket_key": ticket.ticket_key,
        "ticket_url": ticket.ticket_url,
        "created_at": _iso(ticket.created_at),
    }


def ticket_from_row(row: dict[str, Any]) -> TicketRecord:
    try:
        status = TicketStatus(str(row.get("status") or "created"))
    except ValueError:
        status = TicketStatus.CREATED
    return TicketRecord(
        id=str(row.get("id") or ""),
        title=str(row.get("title") or ""),
        description=str(row.get("description") or ""),
        priority=str(row.get("priority") or "low"),
        category=str(row.get("category") or ""),
        project=row.get("project"),
        project_id=row.get("project_id"),
        status=status,
        provider=str(row.get("provider") or PROVIDER),
        ticket_key=row.get("ticket_key"),
        ticket_url=row.get("ticket_url"),
        created_at=_parse_datetime(row.get("created_at")) or utcnow(),
    )


class SupabaseConnectionStore:
    def __init__(
        self,
        client,
        *,
        vault: TokenVault,
        connections_table: str = "platform_connections",
        oauth_states_table: str = "oauth_states",
        tickets_table: str = "support_tickets",
    ):
        self._client = client
        self._vault = vault
        self._connections_table = connections_table
        self._oauth_states_table = oauth_states_table
        self._tickets_table = tickets_table

    def get_connection(self, user_id: str) -> Connection | None:
        result = (
            self._client.table(self._connections_table)
            .select("*")
            .eq("user_id", user_id)
            .eq("provider", PROVIDER)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        if not rows:
            return None
        return _connection_from_row(rows[0], self._vault)

    def put_connection(self, user_id: str, connection: Connection) -> Connection:
        prepared = _prepare_connection(connection)
        self._client.table(self._connections_table).upsert(
            _connection_to_row(user_id, prepared, self._vault),
            on_conflict="user_id,provider",
        ).execute()
        return prepared

    def delete_connection(self, user_id: str) -> None:
        (
            self._client.table(self._connections_table)
            .delete()
            .eq("user_id", user_id)
            .eq("provider", PROVIDER)
            .execute()
        )

    def update_default_project(self, user_id: str, project_name: str) -> JiraProject | None:
        connection = self.get_connection(user_id)
        if not connection:
            return None
        selected = find_project(connection.available_projects, project_name)
        if not selected:
            return None
        (
            self._client.table(self._connections_table)
            .update({"default_project": project_to_dict(selected), "updated_at": _iso(utcnow())})
            .eq("user_id", user_id)
            .eq("provider", PROVIDER)
            .execute()
        )
        return selected

    def put_oauth_state(self, user_id: str, oauth_state: OAuthState) -> None:
        # user_id is unique in the table, so a new handshake replaces the old row in one write.
        self._client.table(self._oauth_states_table).upsert(
            {
                "user_id": user_id,
                "provider": PROVIDER,
                "state": oauth_state.state,
                "code_verifier": oauth_state.code_verifier,
                "code_challenge": oauth_state.code_challenge,
                "conversation_id": oauth_state.conversation_id,
                "created_at": _iso(oauth_state.timestamp),
                "expires_at": _iso(oauth_state.expires_at),
            },
            on_conflict="user_id",
        ).execute()

    def get_oauth_state(self, state: str) -> tuple[str, OAuthState] | None:
        result = (
            self._client.table(self._oauth_states_table)
            .select("*")
            .eq("state", state)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        if not rows:
            return None
        oauth_state = _oauth_state_from_row(rows[0])
        user_id = rows[0].get("user_id")
        if not oauth_state or not user_id:
            return None
        return str(user_id), oauth_state

    def delete_oauth_state(self, user_id: str) -> None:
        self._client.table(self._oauth_states_table).delete().eq("user_id", user_id).execute()

    def purge_expired_oauth_states(self, now: datetime | None = None) -> int:
        current = _iso(now or utcnow())
        result = self._client.table(self._oauth_states_table).delete().lt("expires_at", current).execute()
        return len(result.data or [])

    def add_ticket(self, user_id: str, ticket: TicketRecord) -> TicketRecord:
        self._client.table(self._tickets_table).insert(ticket_to_row(user_id, ticket)).execute()
        return ticket

    def list_tickets(self, user_id: str, limit: int = 50) -> list[TicketRecord]:
        result = (
            self._client.table(self._tickets_table)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(max(1, limit))
            .execute()
        )
        return [ticket_from_row(row) for row in (result.data or [])]
