"""
Wallet services for Apple Wallet pass lifecycle.

This package provides:
- AppleWalletService: Builds signed passes from current database state
- PassCoordinator: Issuing, scans, deactivation and device notification
"""

from .apple import AppleWalletService, create_apple_wallet_service
from .coordinator import PassCoordinator, create_pass_coordinator

__all__ = [
    "AppleWalletService",
    "create_apple_wallet_service",
    "PassCoordinator",
    "create_pass_coordinator",
]
