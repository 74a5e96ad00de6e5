from __future__ import annotations

import argparse
import socket
import sys
from urllib.parse import urlparse

import httpx

from app.core.config import get_settings


def _extract_host(url: str) -> str:
    parsed = urlparse((url or "").strip())
    return (parsed.hostname or "").strip()


def _rest_url(url: str) -> str:
    return f"{url.rstrip('/')}/rest/v1/"


def _is_reachable_status(code: int) -> bool:
    # An auth rejection still proves the host answered.
    return 200 <= code < 500


def _missing_settings(settings) -> list[str]:
    required = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_SERVICE_ROLE_KEY": settings.supabase_service_role_key,
        "OPENAI_API_KEY": settings.openai_api_key,
    }
    provider = (settings.ticket_provider or "jira").strip().lower()
    if provider == "freshworks":
        required["FRESHWORKS_DOMAIN"] = settings.freshworks_domain
        required["FRESHWORKS_API_KEY"] = settings.freshworks_api_key
    else:
        required["JIRA_CLIENT_ID"] = settings.jira_client_id
        required["JIRA_CLIENT_SECRET"] = settings.jira_client_secret
        required["JIRA_REDIRECT_URI"] = settings.jira_redirect_uri
    return [name for name, value in required.items() if not str(value or "").strip()]


def _check_reachable(name: str, url: str, timeout: float, headers: dict[str, str] | None = None) -> bool:
    host = _extract_host(url)
    try:
        socket.getaddrinfo(host, 443)
    except OSError as exc:
        print(f"- {name} dns: FAIL ({type(exc).__name__})")
        return False
    try:
        response = httpx.get(url, headers=headers or {}, timeout=timeout)
    except httpx.HTTPError as exc:
        print(f"- {name} http: FAIL ({type(exc).__name__})")
        return False
    ok = _is_reachable_status(int(response.status_code))
    print(f"- {name} http status: {response.status_code} {'OK' if ok else 'FAIL'}")
    return ok


def main() -> int:
    parser = argparse.ArgumentParser(description="Preflight check for helpdesk storage and provider connectivity")
    parser.add_argument("--timeout-sec", type=float, default=5.0, help="HTTP timeout in seconds")
    args = parser.parse_args()

    settings = get_settings()
    print("[helpdesk-connectivity]")
    print(f"- ticket provider: {settings.ticket_provider}")
    missing = _missing_settings(settings)
    if missing:
        print("- verdict: FAIL")
        print(f"- reason: missing config {', '.join(missing)}")
        return 1

    service_key = settings.supabase_service_role_key
    checks = [
        _check_reachable(
            "supabase",
            _rest_url(settings.supabase_url),
            args.timeout_sec,
            headers={"apikey": service_key, "Authorization": f"Bearer {service_key}"},
        )
    ]
    if (settings.ticket_provider or "jira").strip().lower() == "freshworks":
        checks.append(_check_reachable("freshworks", f"https://{settings.freshworks_domain}/api/v2/tickets", args.timeout_sec))
    else:
        checks.append(_check_reachable("atlassian", settings.jira_authorize_url, args.timeout_sec))
        checks.append(_check_reachable("atlassian-api", f"{settings.jira_api_base_url.rstrip('/')}/oauth/token/accessible-resources", args.timeout_sec))

    if all(checks):
        print("- verdict: PASS")
        return 0
    print("- verdict: FAIL")
    return 1


if __name__ == "__main__":
    sys.exit(main())
