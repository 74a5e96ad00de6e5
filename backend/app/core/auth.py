import httpx
from fastapi import HTTPException, Request

from app.core.config import get_settings


def _auth_error(message: str, code: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"message": message, "code": code})


def _extract_token(request: Request) -> str:
    authorization = request.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.removeprefix("Bearer ").strip()
    # The OAuth popup is opened with a plain GET and cannot set headers.
    return (request.query_params.get("id_token") or "").strip()


def _is_expired_token_response(response: httpx.Response) -> bool:
    try:
        payload = response.json()
    except ValueError:
        return "expired" in response.text.lower()
    if not isinstance(payload, dict):
        return "expired" in response.text.lower()
    message = " ".join(str(payload.get(key) or "") for key in ("msg", "message", "error_description", "error_code"))
    return "expired" in message.lower()


async def get_authenticated_user_id(request: Request) -> str:
    token = _extract_token(request)
    if not token:
        raise _auth_error("An authentication token is required.", "AUTH_REQUIRED")

    settings = get_settings()
    auth_url = f"{settings.supabase_url}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.get(
                auth_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": settings.supabase_service_role_key,
                },
            )
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=503, detail="Authentication service is unavailable.") from exc

    if response.status_code >= 400:
        if _is_expired_token_response(response):
            raise _auth_error("Your session has expired. Please refresh the page and try again.", "TOKEN_EXPIRED")
        raise _auth_error("Authentication failed. Please log in again.", "AUTH_FAILED")

    try:
        payload = response.json()
    except ValueError:
        payload = None
    user_id = payload.get("id") if isinstance(payload, dict) else None
    if not user_id:
        raise _auth_error("Authenticated user could not be resolved.", "AUTH_FAILED")

    return user_id
