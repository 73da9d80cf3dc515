from fastapi import APIRouter

from .routes import (
    cards,
    health,
    passes,
    scans,
    wallet,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Pass lifecycle operations
api_router.include_router(passes.router, prefix="/passes", tags=["passes"])
api_router.include_router(scans.router, prefix="/scans", tags=["scans"])
api_router.include_router(cards.router, prefix="/cards", tags=["cards"])

# Apple Wallet web service (device-facing)
api_router.include_router(wallet.router, prefix="/wallet", tags=["wallet"])
