from functools import lru_cache

from app.services.auth_tokens import AuthTokenService
from app.services.wallets import (
    AppleWalletService,
    PassCoordinator,
    create_apple_wallet_service,
)


@lru_cache
def get_auth_token_service() -> AuthTokenService:
    return AuthTokenService()


@lru_cache
def get_apple_wallet_service() -> AppleWalletService:
    return create_apple_wallet_service()


@lru_cache
def get_pass_coordinator() -> PassCoordinator:
    return PassCoordinator(
        apple=get_apple_wallet_service(),
        auth_tokens=get_auth_token_service(),
    )
