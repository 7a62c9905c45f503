"""FastAPI application setup for the stream points API.

This module creates the FastAPI application with lifespan management,
request tracking, exception translation and routing.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stream_points.bot.services.context import AppContext, create_context
from stream_points.bot.services.exceptions import (
    ResourceNotFoundError,
    ServiceError,
    ValidationError as ServiceValidationError,
)
from stream_points.shared.config import Settings, get_settings
from stream_points.web.api.routers.admin import router as admin_router
from stream_points.web.api.routers.bots import router as bots_router
from stream_points.web.api.routers.clips import router as clips_router
from stream_points.web.api.routers.leaderboard import router as leaderboard_router
from stream_points.web.api.schemas import (
    ErrorDetail,
    ErrorResponse,
    ValidationErrorResponse,
)
from stream_points.web.crud import ConflictError, DatabaseOperationError, NotFoundError

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def _settings(request: Request) -> Settings:
    return request.app.state.context.settings


def _error_response(
    request: Request, status_code: int, detail: str, error_type: str
) -> JSONResponse:
    response = ErrorResponse(
        detail=detail,
        type=error_type,
        timestamp=datetime.now(timezone.utc),
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


async def add_request_id_middleware(request: Request, call_next):
    """Add request ID to request state for tracking."""
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id

    response = await call_next(request)

    response.headers["x-request-id"] = request_id
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic request validation errors.

    Args:
        request: FastAPI request object
        exc: Validation exception

    Returns:
        JSONResponse: 422 response listing each invalid field
    """
    request_id = _request_id(request)

    errors = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(
            ErrorDetail(code=error["type"], message=error["msg"], field=field_path)
        )

    logger.warning(
        "Validation error",
        extra={
            "request_id": request_id,
            "url": str(request.url),
            "method": request.method,
            "errors": [error.model_dump() for error in errors],
        },
    )

    response = ValidationErrorResponse(
        detail="Request validation failed",
        errors=errors,
        timestamp=datetime.now(timezone.utc),
        request_id=request_id,
    )
    return JSONResponse(status_code=422, content=response.model_dump(mode="json"))


async def not_found_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle missing users and clips from either layer."""
    logger.info(
        "Resource not found",
        extra={
            "request_id": _request_id(request),
            "url": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
    )
    return _error_response(request, 404, str(exc), "not_found_error")


async def service_validation_exception_handler(
    request: Request, exc: ServiceValidationError
) -> JSONResponse:
    logger.info(
        "Rejected invalid input",
        extra={"request_id": _request_id(request), "field": exc.field, "error": exc.message},
    )
    return _error_response(request, 400, exc.message, "validation_error")


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.warning(
        f"Service error: {exc.message}",
        extra={"request_id": _request_id(request), "code": exc.code},
    )
    return _error_response(request, 400, exc.message, exc.code.lower())


async def conflict_exception_handler(request: Request, exc: ConflictError) -> JSONResponse:
    """Duplicate rows, e.g. a clip URL that was submitted twice."""
    logger.warning(
        "Conflict error",
        extra={
            "request_id": _request_id(request),
            "url": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
    )
    return _error_response(request, 409, str(exc), "conflict_error")


async def database_exception_handler(
    request: Request, exc: DatabaseOperationError
) -> JSONResponse:
    """Storage failures map to 500; details are shown only with verbose errors in development."""
    logger.error(
        f"Database operation error: {exc}",
        extra={
            "request_id": _request_id(request),
            "url": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
    )

    settings = _settings(request)
    if settings.verbose_errors_enabled and settings.is_development:
        detail = f"Database error: {str(exc)}"
    else:
        detail = "Internal server error"

    return _error_response(request, 500, detail, "database_error")


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions globally."""
    logger.exception(
        "Unhandled exception",
        extra={
            "request_id": _request_id(request),
            "url": str(request.url),
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    settings = _settings(request)
    if settings.verbose_errors_enabled and settings.is_development:
        detail = f"Internal server error: {str(exc)}"
    else:
        detail = "Internal server error"

    return _error_response(request, 500, detail, "internal_error")


def create_api(context: Optional[AppContext] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        context: Shared application context. When omitted the lifespan builds
            one from the environment and closes it on shutdown (API-only mode).

    Returns:
        FastAPI: Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = None
        if app.state.context is None:
            owned = await create_context(get_settings())
            app.state.context = owned
            logger.info("API started in standalone mode")

        try:
            yield
        finally:
            if owned is not None:
                await owned.close()

    api = FastAPI(
        title="Stream Points API",
        description="Leaderboards, clip review and points administration for the stream community bot",
        version=API_VERSION,
        lifespan=lifespan,
    )
    api.state.context = context

    api.middleware("http")(add_request_id_middleware)

    settings = context.settings if context is not None else get_settings()
    if settings.is_development:
        api.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    api.add_exception_handler(RequestValidationError, validation_exception_handler)
    api.add_exception_handler(NotFoundError, not_found_exception_handler)
    api.add_exception_handler(ResourceNotFoundError, not_found_exception_handler)
    api.add_exception_handler(ServiceValidationError, service_validation_exception_handler)
    api.add_exception_handler(ServiceError, service_exception_handler)
    api.add_exception_handler(ConflictError, conflict_exception_handler)
    api.add_exception_handler(DatabaseOperationError, database_exception_handler)
    api.add_exception_handler(Exception, global_exception_handler)

    api.include_router(leaderboard_router, tags=["Leaderboard"])
    api.include_router(clips_router, tags=["Clips"])
    api.include_router(admin_router, tags=["Admin"])
    api.include_router(bots_router, tags=["Bot Blacklist"])

    @api.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "version": API_VERSION}

    return api
