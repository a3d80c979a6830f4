"""FastAPI application entry point with global error handling."""
from __future__ import annotations

import os
import sys

# Add src/ to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logging_config import get_logger, setup_logging
from core.exceptions import (
    ConfigurationError,
    ConfirmationConflictError,
    LockNotAcquiredError,
    NotFoundError,
    PropertyConfirmationError,
    SubmissionError,
    TokenError,
    ValidationError,
)
from api.routes import (
    health,
    import_batches,
    properties,
    public_confirmations,
    scheduled_confirmations,
)

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Sets up logging, validates the database and logs startup/shutdown.
    The app still starts when the database is not ready so health checks
    can report it.
    """
    setup_logging(level=SETTINGS.log_level, json_format=SETTINGS.log_format == "json")

    if not SETTINGS.dry_run:
        LOGGER.warning("!!! LIVE MODE !!! DRY_RUN=false - owner messages will really be sent")
    else:
        LOGGER.info("DRY_RUN mode enabled - no owner messages will be sent")

    LOGGER.info(
        "API application starting",
        extra={"extra_data": {
            "environment": SETTINGS.environment,
            "dry_run": SETTINGS.dry_run,
            "delivery_method": SETTINGS.default_delivery_method,
            "enabled_services": SETTINGS.get_enabled_services(),
        }}
    )

    from core.db import init_db, validate_database
    db_status = validate_database()
    if db_status["status"] == "error":
        LOGGER.error(
            "Database validation failed - app will start without database",
            extra={"extra_data": {"errors": db_status["errors"]}}
        )
    elif db_status["status"] == "missing_tables":
        LOGGER.warning(
            "Missing database tables detected - creating them",
            extra={"extra_data": {"missing": db_status["tables_missing"]}}
        )
        init_db()
    else:
        LOGGER.info(
            "Database validation passed",
            extra={"extra_data": {"tables_found": len(db_status["tables_found"])}}
        )

    yield
    LOGGER.info("API application shutting down")


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance with:
        - CORS middleware
        - Global exception handlers
        - Public and admin confirmation routes
    """
    application = FastAPI(
        title="Property Confirmation Service",
        description="Owner availability and price confirmation workflow",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Global Exception Handlers
    # -------------------------------------------------------------------------

    @application.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "not_found", str(exc))

    @application.exception_handler(ConfirmationConflictError)
    async def conflict_handler(request: Request, exc: ConfirmationConflictError) -> JSONResponse:
        """Illegal transitions, e.g. cancelling a confirmation the owner already answered."""
        LOGGER.warning(f"Confirmation conflict: {exc}", extra={"extra_data": {"path": request.url.path}})
        return _error(409, "conflict", str(exc))

    @application.exception_handler(LockNotAcquiredError)
    async def lock_handler(request: Request, exc: LockNotAcquiredError) -> JSONResponse:
        return _error(409, "run_in_progress", str(exc))

    @application.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        LOGGER.warning(f"Validation error: {exc}", extra={"extra_data": {"path": request.url.path}})
        return _error(400, "validation_error", str(exc))

    @application.exception_handler(SubmissionError)
    async def submission_handler(request: Request, exc: SubmissionError) -> JSONResponse:
        return _error(400, exc.code, str(exc))

    @application.exception_handler(TokenError)
    async def token_handler(request: Request, exc: TokenError) -> JSONResponse:
        return _error(400, exc.code, "link invalid or expired")

    @application.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        LOGGER.error(f"Configuration error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "configuration_error",
                "message": "Service misconfiguration",
                "detail": "Please contact the administrator.",
            },
        )

    @application.exception_handler(PropertyConfirmationError)
    async def app_error_handler(request: Request, exc: PropertyConfirmationError) -> JSONResponse:
        """Handle all other application errors."""
        LOGGER.error(f"Application error: {exc}", exc_info=True)
        return _error(500, "application_error", str(exc))

    # -------------------------------------------------------------------------
    # Include Routers
    # -------------------------------------------------------------------------
    application.include_router(health.router, prefix="/health", tags=["Health"])
    application.include_router(public_confirmations.router, tags=["Owner Confirmations"])
    application.include_router(
        scheduled_confirmations.router,
        prefix="/admin/{tenant_id}/scheduled-confirmations",
        tags=["Scheduled Confirmations"],
    )
    application.include_router(
        properties.router,
        prefix="/admin/{tenant_id}/properties",
        tags=["Properties"],
    )
    application.include_router(
        import_batches.router,
        prefix="/admin/{tenant_id}/import",
        tags=["Import"],
    )

    return application


# Create the application instance
app = create_app()

LOGGER.info("API application initialized")
