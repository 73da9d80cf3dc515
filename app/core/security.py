import logging

from fastapi import HTTPException, status

from app.services.auth_tokens import AuthTokenService

logger = logging.getLogger(__name__)

APPLE_PASS_SCHEME = "ApplePass "


def verify_auth_token(authorization: str | None) -> str | None:
    """Extract auth token from Authorization header (Apple Wallet passes)."""
    if not authorization:
        return None
    if authorization.startswith(APPLE_PASS_SCHEME):
        return authorization[len(APPLE_PASS_SCHEME):].strip() or None
    return None


def require_pass_auth(
    serial_number: str,
    authorization: str | None,
    auth_tokens: AuthTokenService,
) -> None:
    """Raise 401 unless the header carries the pass's token."""
    auth_token = verify_auth_token(authorization)
    if not auth_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization required")

    if not auth_tokens.validate(serial_number, auth_token):
        logger.warning(f"Rejected wallet request for pass {serial_number}: invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication")
