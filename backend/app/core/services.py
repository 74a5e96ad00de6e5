from __future__ import annotations

from functools import lru_cache

from supabase import create_client

from app.core.config import get_settings
from app.security.token_vault import TokenVault
from helpdesk.connection_store import ConnectionStore, InMemoryConnectionStore, SupabaseConnectionStore
from helpdesk.jira_oauth import JiraOAuthService
from helpdesk.llm import TextCompletion
from helpdesk.session import SessionOrchestrator
from helpdesk.state_machine import ResolutionStateMachine
from helpdesk.ticketing import FreshworksTicketProvider, JiraTicketProvider, TicketingGateway, TicketProvider
from helpdesk.transcript_store import InMemoryTranscriptStore, SupabaseTranscriptStore, TranscriptStore


def _uses_database() -> bool:
    return (get_settings().helpdesk_storage or "db").strip().lower() == "db"


@lru_cache
def get_supabase_client():
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


@lru_cache
def get_connection_store() -> ConnectionStore:
    if not _uses_database():
        return InMemoryConnectionStore()
    settings = get_settings()
    return SupabaseConnectionStore(
        get_supabase_client(),
        vault=TokenVault(settings.token_encryption_key),
        connections_table=settings.connections_table,
        oauth_states_table=settings.oauth_states_table,
        tickets_table=settings.tickets_table,
    )


@lru_cache
def get_transcript_store() -> TranscriptStore:
    if not _uses_database():
        return InMemoryTranscriptStore()
    settings = get_settings()
    return SupabaseTranscriptStore(
        get_supabase_client(),
        states_table=settings.support_states_table,
        messages_table=settings.messages_table,
    )


@lru_cache
def get_jira_oauth() -> JiraOAuthService:
    return JiraOAuthService.from_settings(get_settings(), get_connection_store())


def build_ticket_provider(settings) -> TicketProvider:
    provider = (settings.ticket_provider or "jira").strip().lower()
    if provider == "freshworks":
        return FreshworksTicketProvider(
            domain=settings.freshworks_domain,
            api_key=settings.freshworks_api_key,
            requester_email=settings.freshworks_requester_email,
            timeout=settings.http_timeout_seconds,
        )
    if provider != "jira":
        raise ValueError(f"unsupported ticket_provider: {settings.ticket_provider}")
    return JiraTicketProvider(
        api_base_url=settings.jira_api_base_url,
        project_key=settings.jira_project_key,
        issue_type=settings.jira_issue_type,
        timeout=settings.http_timeout_seconds,
    )


@lru_cache
def get_ticketing_gateway() -> TicketingGateway:
    return TicketingGateway(
        store=get_connection_store(),
        oauth=get_jira_oauth(),
        provider=build_ticket_provider(get_settings()),
    )


@lru_cache
def get_session_orchestrator() -> SessionOrchestrator:
    gateway = get_ticketing_gateway()
    machine = ResolutionStateMachine(
        completion=TextCompletion.from_settings(get_settings()),
        gateway=gateway,
        connections=get_connection_store(),
    )
    if gateway.provider.requires_connection:
        is_connected = get_jira_oauth().is_connected
    else:
        # Freshworks tickets need no per-user authorization.
        def is_connected(_user_id: str) -> bool:
            return gateway.provider.default_project() is not None

    return SessionOrchestrator(machine=machine, transcripts=get_transcript_store(), is_connected=is_connected)
