"""FastAPI application entry point for the Proximity Tracker."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import keys, location
from app.config import Settings, get_settings
from app.middleware import APIKeyMiddleware, ErrorHandlingMiddleware, RateLimitMiddleware
from app.services.cleanup import CleanupService
from app.services.store import LocationStore, build_store

VERSION = "0.1.0"

settings = get_settings()

# Configure logging - PRIVACY: Never log coordinates, ciphertexts or keys
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Validation error types that mean "field not provided"
_MISSING_ERROR_TYPES = {"missing", "string_too_short"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    store: LocationStore = app.state.store
    cleanup: CleanupService = app.state.cleanup

    # Startup
    logger.info(f"Starting Proximity Tracker ({store.backend_name} store)...")
    await store.connect()
    await cleanup.start()
    logger.info("Proximity Tracker ready")

    yield

    # Shutdown
    logger.info("Shutting down Proximity Tracker...")
    await cleanup.stop()
    await store.close()
    logger.info("Proximity Tracker stopped")


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render HTTP errors as {"error": message}."""
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        # Unmatched route
        detail = "Not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Reject malformed request bodies with 400 instead of FastAPI's 422."""
    errors = exc.errors()
    missing = any(error.get("type") in _MISSING_ERROR_TYPES for error in errors)
    fields = sorted(
        {str(error["loc"][-1]) for error in errors if error.get("loc")}
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Missing required fields" if missing else "Invalid request data",
            "fields": fields,
        },
    )


def create_app(
    store: Optional[LocationStore] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        store: Registry backend; defaults to the one selected by settings
        app_settings: Settings override (tests); defaults to get_settings()

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or settings
    store = store or build_store(app_settings)

    app = FastAPI(
        title="Proximity Tracker",
        description="Encrypted location exchange with 1 km proximity-gated disclosure",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.store = store
    app.state.cleanup = CleanupService(
        store,
        max_age_seconds=app_settings.purge_after_seconds,
        interval_seconds=app_settings.cleanup_interval_seconds,
    )

    # Middleware (last added runs first: errors, then rate limit, then auth)
    app.add_middleware(
        APIKeyMiddleware,
        api_key=app_settings.tracker_api_key,
        header_name=app_settings.api_key_header_name,
    )
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=app_settings.rate_limit_requests_per_minute,
        burst=app_settings.rate_limit_burst,
    )
    app.add_middleware(ErrorHandlingMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(keys.router)
    app.include_router(location.router)

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """
        Health check endpoint with registry sizes.

        Returns:
        - status: API health status
        - storeBackend: Active registry backend
        - storage: Number of stored locations and key pairs
        """
        current_store: LocationStore = request.app.state.store
        counts = await current_store.counts()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "storeBackend": current_store.backend_name,
            "storage": {
                "locations": counts.locations,
                "keyPairs": counts.key_pairs,
            },
        }

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": "Proximity Tracker",
            "description": "RSA-encrypted location sharing, revealed only within 1 km",
            "version": VERSION,
            "endpoints": {
                "health": "/health",
                "store_keys": "POST /api/keys",
                "get_keys": "GET /api/keys/{senderId}",
                "store_location": "POST /api/location",
                "get_location": "GET /api/location/{senderId}",
                "verify": "POST /api/location/verify",
                "docs": "/docs",
            },
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured port."""
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
