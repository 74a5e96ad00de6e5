import base64

from cryptography.fernet import Fernet, InvalidToken

FERNET_KEY_LENGTH = 44


def _fernet_key(raw_key: str) -> bytes:
    key = raw_key.encode("utf-8")
    if len(key) == FERNET_KEY_LENGTH:
        return key
    # Short secrets are padded/truncated to 32 bytes and base64url-encoded.
    return base64.urlsafe_b64encode(key.ljust(32, b"0")[:32])


class TokenVault:
    """Encrypts OAuth access and refresh tokens before they reach storage."""

    def __init__(self, raw_key: str | None):
        self._cipher = Fernet(_fernet_key(raw_key)) if raw_key else None

    @property
    def enabled(self) -> bool:
        return self._cipher is not None

    def encrypt(self, token: str | None) -> str | None:
        if not token or self._cipher is None:
            return token
        return self._cipher.encrypt(token.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str | None) -> str | None:
        if not token or self._cipher is None:
            return token
        try:
            return self._cipher.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            # Rows written before encryption was enabled hold plain tokens.
            return token
