"""FastAPI application for the Consentry REST API.

This module configures the FastAPI application with request logging, error
handling and OpenAPI documentation for the consent operations.
"""

import logging
import time
from datetime import datetime
from typing import Optional
import uuid

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from consentry import __version__
from consentry.api.schemas import ErrorResponse, HealthResponse
from consentry.api.routes import consent_router
from consentry.consent.config import ConsentConfiguration, get_consent_config
from consentry.consent.errors import (
    CategorizationPermissionError,
    ConsentError,
    ConsentPersistenceError,
    InvalidConsentDataError
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Application metadata
APP_VERSION = __version__
APP_TITLE = "Consentry API"
APP_DESCRIPTION = """
Consentry exposes the cookie consent core to the host application.

## Features

* **Consent Decisions**: Persist a visitor's category choices and get the matching Consent Mode signals
* **Consent Data**: Read the stored decision and the classified cookies of a request
* **Unknown Cookies**: Report unclassified cookies for admin review
* **Categorization**: Assign categories to cookies (admin token required)
"""

# Global application state
app_start_time = datetime.utcnow()

ERROR_STATUS = {
    InvalidConsentDataError: 400,
    CategorizationPermissionError: 403,
    ConsentPersistenceError: 503,
}


def error_status(exc: ConsentError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(config: Optional[ConsentConfiguration] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Consent configuration; loaded with get_consent_config if omitted

    Returns:
        Configured FastAPI application instance
    """
    config = config or get_consent_config()

    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Cookies travel with cross-origin calls only for explicitly listed origins
    origins = list(config.cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )
    else:
        logger.info("No CORS origins configured, consent API is same-origin only")

    @app.middleware("http")
    async def add_request_id_and_logging(request: Request, call_next):
        """Add request ID and logging middleware."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
            }
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            duration = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - {response.status_code}",
                extra={
                    "request_id": request_id,
                    "status_code": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                }
            )
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {str(e)}",
                extra={
                    "request_id": request_id,
                    "error": str(e),
                    "duration_ms": round(duration * 1000, 2),
                },
                exc_info=True
            )
            raise

    @app.exception_handler(ConsentError)
    async def consent_exception_handler(request: Request, exc: ConsentError):
        """Map consent core errors onto structured error responses."""
        request_id = getattr(request.state, "request_id", None)
        status_code = error_status(exc)

        if status_code >= 500:
            logger.error(f"Consent operation failed: {exc.message}", extra={"request_id": request_id})
        else:
            logger.warning(f"Consent request rejected: {exc.message}", extra={"request_id": request_id})

        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.error_code,
                message=exc.message,
                details=exc.details or None,
                request_id=request_id,
                timestamp=datetime.utcnow()
            ).model_dump(mode='json')
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with consistent error format."""
        request_id = getattr(request.state, "request_id", None)

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"http_{exc.status_code}",
                message=str(exc.detail),
                request_id=request_id,
                timestamp=datetime.utcnow()
            ).model_dump(mode='json')
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with detailed information."""
        request_id = getattr(request.state, "request_id", None)

        errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"][1:])  # Skip 'body'
            errors.append({
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            })

        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="validation_error",
                message="Request validation failed",
                details={"validation_errors": errors},
                request_id=request_id,
                timestamp=datetime.utcnow()
            ).model_dump(mode='json')
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle Starlette HTTP exceptions."""
        request_id = getattr(request.state, "request_id", None)

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"http_{exc.status_code}",
                message=str(exc.detail),
                request_id=request_id,
                timestamp=datetime.utcnow()
            ).model_dump(mode='json')
        )

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
        description="Returns the current health status of the API"
    )
    async def health_check():
        """Health check endpoint for monitoring and operational purposes."""
        uptime = (datetime.utcnow() - app_start_time).total_seconds()

        return HealthResponse(
            status="healthy",
            version=APP_VERSION,
            timestamp=datetime.utcnow(),
            services={"consent_core": "healthy"},
            uptime_seconds=uptime
        )

    app.include_router(consent_router, prefix="/api")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "consentry.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
        access_log=True,
    )
