import hashlib
import hmac
import logging
import secrets

from postgrest.exceptions import APIError

from app.repositories.pass_auth_token import PassAuthTokenRepository
from database.connection import is_unique_violation

logger = logging.getLogger(__name__)


def generate_auth_token() -> str:
    """256-bit URL-safe token (well above Apple's 16 character minimum)."""
    return secrets.token_urlsafe(32)


def _digest(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).digest()


class AuthTokenService:
    """Per-pass web service tokens, minted lazily and never rotated."""

    def get_or_create(self, serial_number: str) -> str:
        existing = PassAuthTokenRepository.get(serial_number)
        if existing:
            return existing["auth_token"]

        token = generate_auth_token()
        try:
            PassAuthTokenRepository.create(serial_number, token)
        except APIError as e:
            if not is_unique_violation(e):
                raise
            # Another request minted first; its token is the one on record
            existing = PassAuthTokenRepository.get(serial_number)
            if existing is None:
                raise
            return existing["auth_token"]
        return token

    def validate(self, serial_number: str, token: str | None) -> bool:
        """Constant-time check of a presented token."""
        if not token:
            return False
        record = PassAuthTokenRepository.get(serial_number)
        if not record or not record.get("auth_token"):
            return False
        # Compare fixed-length digests, not the raw tokens
        return hmac.compare_digest(_digest(record["auth_token"]), _digest(token))
