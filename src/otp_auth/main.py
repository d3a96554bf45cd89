"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from otp_auth.api.routes import router as auth_router
from otp_auth.bootstrap import Services, build_services
from otp_auth.config import Settings, settings
from otp_auth.database.engine import init_db
from otp_auth.errors import BackendUnavailable, DeliveryFailure, OTPAuthError, RateLimited, SigningFailure

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


async def _sweep_expired(services: Services, interval: int) -> None:
    """Periodically delete expired and used codes from the store."""
    while True:
        await asyncio.sleep(interval)
        try:
            await services.otp.purge_expired()
        except BackendUnavailable:
            logger.warning("Expired-code sweep skipped: store unavailable")


def create_app(app_settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the application; *services* overrides the wiring (tests)."""
    app_settings = app_settings or settings
    services = services or build_services(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle hook."""
        logger.info("Starting %s (%s) …", app_settings.app_name, app_settings.environment)
        if services.engine is not None:
            await init_db(services.engine)
            logger.info("Database initialised")
        sweeper = asyncio.create_task(
            _sweep_expired(services, app_settings.otp_sweep_interval_seconds)
        )
        yield
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await services.close()
        logger.info("Shutting down %s …", app_settings.app_name)

    app = FastAPI(
        title=app_settings.app_name,
        description="One-time passcode email login",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.settings = app_settings
    app.include_router(auth_router)

    @app.exception_handler(OTPAuthError)
    async def handle_auth_error(request: Request, exc: OTPAuthError) -> JSONResponse:
        content: dict = {"error": exc.message}
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimited):
            content["retry_after_seconds"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, DeliveryFailure) and not app_settings.is_production:
            content["detail"] = exc.detail
        elif isinstance(exc, SigningFailure):
            headers["WWW-Authenticate"] = "Bearer"
        return JSONResponse(content, status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected malformed request body: %s", exc.errors())
        return JSONResponse({"error": "Invalid request."}, status_code=400)

    @app.get("/health")
    async def health_check():
        """Simple liveness probe."""
        store = services.otp.store
        return {
            "status": "healthy",
            "app": app_settings.app_name,
            "storage": store.storage_type,
            "degraded": not store.durable,
        }

    return app


app = create_app()
