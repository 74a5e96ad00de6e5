from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    helpdesk_storage: str = "db"
    connections_table: str = "platform_connections"
    oauth_states_table: str = "oauth_states"
    support_states_table: str = "support_states"
    messages_table: str = "conversation_messages"
    tickets_table: str = "support_tickets"

    jira_client_id: str | None = None
    jira_client_secret: str | None = None
    jira_redirect_uri: str | None = None
    jira_scope: str = "read:jira-user read:jira-work write:jira-work offline_access"
    jira_audience: str = "api.atlassian.com"
    jira_authorize_url: str = "https://auth.atlassian.com/authorize"
    jira_token_url: str = "https://auth.atlassian.com/oauth/token"
    jira_api_base_url: str = "https://api.atlassian.com"
    jira_project_key: str | None = None
    jira_issue_type: str = "Task"
    oauth_state_ttl_seconds: int = 900

    token_encryption_key: str | None = None

    ticket_provider: str = "jira"
    freshworks_domain: str | None = None
    freshworks_api_key: str | None = None
    freshworks_requester_email: str | None = None

    openai_api_key: str | None = None
    google_api_key: str | None = None
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o"
    llm_fallback_provider: str | None = None
    llm_fallback_model: str | None = None
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000

    http_timeout_seconds: float = 15.0
    llm_timeout_seconds: float = 20.0

    frontend_url: str = "http://localhost:3000"
    allowed_origins: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
