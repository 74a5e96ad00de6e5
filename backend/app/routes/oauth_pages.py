from __future__ import annotations

import json
from html import escape

from fastapi.responses import HTMLResponse

ERROR_MESSAGES = {
    "provider_error": ("Authorization was cancelled", "Jira did not grant access. You can close this window and try again."),
    "missing_params": ("Invalid callback", "The authorization response was incomplete. Please start the connection again."),
    "invalid_state": (
        "Invalid or expired link",
        "This authorization link is invalid or has expired. Please start the connection again.",
    ),
    "code_already_used": (
        "Link already used",
        "This authorization link was already used. If Jira is not connected yet, please start the connection again.",
    ),
    "exchange_failed": ("Connection failed", "Jira did not accept the authorization. Please try again."),
    "resources_failed": ("Connection failed", "We could not read your Jira sites. Please try again."),
    "no_resources": (
        "No Jira site available",
        "Your Atlassian account has no Jira site this app can use. Ask your administrator for access and try again.",
    ),
    "not_configured": ("Jira is not configured", "The Jira integration is not configured on this server."),
}
DEFAULT_ERROR = ("Connection failed", "Something went wrong while connecting Jira. Please try again.")

_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 48px;">
<h2>{title}</h2>
<p>{body}</p>
<script>
if (window.opener) {{
  window.opener.postMessage({message}, {origin});
  setTimeout(function () {{ window.close(); }}, {close_after_ms});
}}
</script>
</body>
</html>
"""


def _render(*, title: str, body: str, message: dict, origin: str, close_after_ms: int, status_code: int) -> HTMLResponse:
    html = _PAGE.format(
        title=escape(title),
        body=escape(body),
        message=json.dumps(message).replace("</", "<\\/"),
        origin=json.dumps(origin or "*"),
        close_after_ms=close_after_ms,
    )
    return HTMLResponse(content=html, status_code=status_code)


def render_success_page(*, project_name: str, conversation_id: str | None, origin: str) -> HTMLResponse:
    return _render(
        title="Jira connected",
        body=f"Jira is connected to {project_name}. You can close this window and return to the chat.",
        message={"type": "jira_oauth", "status": "connected", "project": project_name, "conversationId": conversation_id},
        origin=origin,
        close_after_ms=1500,
        status_code=200,
    )


def render_error_page(reason: str, *, origin: str) -> HTMLResponse:
    title, body = ERROR_MESSAGES.get(reason, DEFAULT_ERROR)
    return _render(
        title=title,
        body=body,
        message={"type": "jira_oauth", "status": "error", "reason": reason},
        origin=origin,
        close_after_ms=5000,
        status_code=400,
    )
