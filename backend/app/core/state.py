import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from helpdesk.types import OAuthState

DEFAULT_STATE_TTL_SECONDS = 15 * 60


def _b64url_no_pad(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def generate_state_token() -> str:
    return secrets.token_hex(32)


def generate_code_verifier() -> str:
    return _b64url_no_pad(secrets.token_bytes(32))


def build_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url_no_pad(digest)


def build_oauth_state(
    conversation_id: str | None = None,
    ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
    now: datetime | None = None,
) -> OAuthState:
    issued_at = now or datetime.now(timezone.utc)
    verifier = generate_code_verifier()
    return OAuthState(
        state=generate_state_token(),
        code_verifier=verifier,
        code_challenge=build_code_challenge(verifier),
        conversation_id=conversation_id or None,
        timestamp=issued_at,
        expires_at=issued_at + timedelta(seconds=ttl_seconds),
    )


def is_state_expired(oauth_state: OAuthState, now: datetime | None = None) -> bool:
    current = now or datetime.now(timezone.utc)
    return current > oauth_state.expires_at
