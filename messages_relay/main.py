"""
Messages Relay Application Entry Point

FastAPI application factory: routes, CORS, exception handlers and the
backend router lifecycle.
"""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from messages_relay import __version__
from messages_relay.api import messages_router
from messages_relay.common.errors import AppError
from messages_relay.config import Settings
from messages_relay.logging_config import setup_logging
from messages_relay.services.router import BackendRouter

logger = logging.getLogger(__name__)


def _allowed_origins(settings: Settings) -> list[str]:
    # Parse ALLOWED_ORIGINS from comma-separated string to list
    return [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]


def create_app(settings: Optional[Settings] = None, backend_router: Optional[BackendRouter] = None) -> FastAPI:
    """
    Create the application

    Args:
        settings: Configuration; read from the environment when omitted
        backend_router: Router to serve with; built from settings when omitted

    Returns:
        FastAPI: Configured application
    """
    settings = settings or Settings()
    setup_logging(settings)
    backend_router = backend_router or BackendRouter(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application Lifecycle Management

        Warm up configured aggregator targets on startup, release the shared
        HTTP client on shutdown.
        """
        await backend_router.warm_up()
        logger.info(
            "%s listening on %s:%d (mode=%s)",
            settings.APP_NAME, settings.HOST, settings.PORT, backend_router.describe()["mode"],
        )
        yield
        await backend_router.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Messages API proxy for aggregator, local and native chat backends",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.router = backend_router

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """Handle application custom exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(include_details=settings.DEBUG),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """
        Handle uncaught exceptions

        The affected request gets a 500; the process keeps serving.
        """
        logger.error(
            "Uncaught exception: %s\nPath: %s\nTraceback:\n%s",
            str(exc),
            request.url.path,
            traceback.format_exc(),
        )
        error = {"type": "server_error", "message": str(exc) or "Internal server error"}
        if settings.DEBUG:
            error["traceback"] = traceback.format_exc().split("\n")
        return JSONResponse(status_code=500, content={"type": "error", "error": error})

    @app.get("/", tags=["Health"])
    async def root():
        return {"status": "ok", "message": settings.APP_NAME, "config": backend_router.describe()}

    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health Check

        Used for service liveness probe.
        """
        return {"status": "ok"}

    app.include_router(messages_router)
    return app


if __name__ == "__main__":
    _settings = Settings()
    uvicorn.run(
        "messages_relay.main:create_app",
        factory=True,
        host=_settings.HOST,
        port=_settings.PORT,
        log_config=None,
    )
