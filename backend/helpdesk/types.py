from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum


class SupportStage(StrEnum):
    ANALYZING = "analyzing"
    TROUBLESHOOTING = "troubleshooting"
    COLLECTING_INFO = "collecting_info"
    REQUESTING_PERMISSION = "requesting_permission"
    ESCALATING = "escalating"
    CREATING_TICKET = "creating_ticket"
    CHECKING_JIRA = "checking_jira"
    GENERAL_CHAT = "general_chat"
    COMPLETED = "completed"


class Intent(StrEnum):
    CHECK_JIRA = "check_jira"
    GENERAL_CHAT = "general_chat"
    COLLECT_INFO = "collect_info"
    CREATE_TICKET = "create_ticket"
    REQUEST_PERMISSION = "request_permission"
    ESCALATE = "escalate"
    ANALYZE = "analyze"
    PROVIDE_SOLUTION = "provide_solution"


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class TicketStatus(StrEnum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SystemInfo:
    os: str | None = None
    ram: str | None = None
    storage: str | None = None
    device_age: str | None = None
    device_type: str | None = None
    # Free-text answer kept when nothing structured could be read from it.
    raw: str | None = None


@dataclass
class TicketDraft:
    title: str
    description: str
    priority: str  # low | medium | high | critical | urgent
    category: str


@dataclass
class SupportState:
    user_id: str
    conversation_id: str
    issue: str
    attempts: int = 0
    solutions: list[str] = field(default_factory=list)
    user_feedback: list[str] = field(default_factory=list)
    current_stage: SupportStage = SupportStage.ANALYZING
    last_message: str = ""
    system_info: SystemInfo | None = None
    ticket_permission: bool | None = None
    ticket_details: TicketDraft | None = None
    jira_connected: bool = False
    response: str | None = None
    version: int = 0
    # Set on the fallback state returned when a turn could not be processed.
    turn_failed: bool = field(default=False, compare=False)


@dataclass
class JiraProject:
    cloud_id: str
    name: str
    url: str = ""
    avatar_url: str | None = None
    scopes: list[str] = field(default_factory=list)


@dataclass
class Connection:
    status: ConnectionStatus
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str = ""
    available_projects: list[JiraProject] = field(default_factory=list)
    default_project: JiraProject | None = None
    connected_at: datetime | None = None
    updated_at: datetime | None = None
    reason: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    def active_project(self) -> JiraProject | None:
        if self.default_project is not None:
            return self.default_project
        return self.available_projects[0] if self.available_projects else None

    def ensure_default_project(self) -> None:
        if not self.available_projects:
            return
        ids = {project.cloud_id for project in self.available_projects}
        if self.default_project is None or self.default_project.cloud_id not in ids:
            self.default_project = self.available_projects[0]


@dataclass
class OAuthState:
    state: str
    code_verifier: str
    code_challenge: str
    conversation_id: str | None
    timestamp: datetime
    expires_at: datetime


@dataclass
class TicketRecord:
    title: str
    description: str
    priority: str
    category: str
    project: str | None = None
    project_id: str | None = None
    status: TicketStatus = TicketStatus.CREATED
    provider: str = "jira"
    ticket_key: str | None = None
    ticket_url: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
