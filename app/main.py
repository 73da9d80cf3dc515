import asyncio
import contextlib
import logging
import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api import api_router
from app.api.deps import get_apple_wallet_service
from app.core.config import settings
from app.core.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitMiddleware,
    create_rate_limiter,
    sweep_periodically,
)
from app.domain.errors import PassServiceError
from app.services.certificate_provider import get_certificate_provider, reload_certificate_provider
from database.connection import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _install_reload_signal() -> None:
    """Reload signing certificates on SIGHUP (after a rotation)."""
    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGHUP, reload_certificate_provider)
    except (AttributeError, NotImplementedError, RuntimeError, ValueError):
        # No SIGHUP on this platform, or not running in the main thread
        logger.debug("SIGHUP certificate reload not available")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    get_certificate_provider()
    _install_reload_signal()
    apple = app.dependency_overrides.get(get_apple_wallet_service, get_apple_wallet_service)()

    sweeper = asyncio.create_task(
        sweep_periodically(app.state.rate_limiter, settings.rate_limit_sweep_seconds)
    )
    yield
    # Shutdown
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    apple.shutdown()


async def pass_service_error_handler(request: Request, exc: PassServiceError) -> JSONResponse:
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app(rate_limiter: FixedWindowRateLimiter | None = None) -> FastAPI:
    app = FastAPI(
        title="Wallet Pass Service",
        description="Apple Wallet pass issuing, signing and update service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.rate_limiter = rate_limiter or create_rate_limiter()
    app.add_middleware(RateLimitMiddleware, limiter=app.state.rate_limiter)

    app.add_exception_handler(PassServiceError, pass_service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include all routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
