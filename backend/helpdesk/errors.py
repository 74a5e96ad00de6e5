from __future__ import annotations

from enum import StrEnum


class TicketingErrorCode(StrEnum):
    NOT_CONNECTED = "not_connected"
    NO_PROJECT = "no_project"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    PROVIDER_HTTP_ERROR = "provider_http_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


class TicketingError(Exception):
    def __init__(self, code: TicketingErrorCode, *, status_code: int | None = None, body: str | None = None):
        self.code = TicketingErrorCode(code)
        self.status_code = status_code
        self.body = body
        detail = f"{self.code}"
        if status_code is not None:
            detail = f"{detail} status={status_code}"
        super().__init__(detail)

    @property
    def requires_reconnect(self) -> bool:
        return self.code in {TicketingErrorCode.NOT_CONNECTED, TicketingErrorCode.TOKEN_REFRESH_FAILED}


class OAuthFlowError(Exception):
    """Handshake failure that ends on a user-visible callback page."""

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class TokenRefreshError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class CompletionError(Exception):
    pass


class ConcurrentUpdateError(Exception):
    pass
