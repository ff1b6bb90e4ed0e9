"""
FastAPI application entry point.

This module sets up the FastAPI application with all middleware,
routers, and error handlers.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import audit_logs, auth, hsk, invitations, profiles, users
from core.config import settings
from core.database import check_db_connection
from core.logging import log_requests, setup_logging
from core.exceptions import APIException
from core.payload import validation_error_from_pydantic
from core.security_headers import SecurityHeadersMiddleware
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


def _filter_sensitive_data(event, hint=None):
    """Filter sensitive data before sending to Sentry."""
    # Remove Authorization headers
    if "request" in event and "headers" in event["request"]:
        headers = event["request"]["headers"]
        if isinstance(headers, dict):
            headers.pop("authorization", None)
            headers.pop("Authorization", None)
            headers.pop("cookie", None)
    return event


# Initialize Sentry for error tracking (production)
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        # Don't send PII
        send_default_pii=False,
        before_send=_filter_sensitive_data,
    )
    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")


# Create FastAPI app
app = FastAPI(
    title="Cultural Center Admin API",
    description="Staff roles, invitations, audit log and exam registrations",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


# CORS middleware
# Production: set CORS_ORIGINS env var (comma-separated)
if settings.CORS_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
else:
    allowed_origins = [settings.APP_BASE_URL]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)


# Request logging middleware
app.middleware("http")(log_requests)


# Error handlers
@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    """Every API error carries a stable error_code next to the message."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = validation_error_from_pydantic(exc)
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail, "error_code": error.error_code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error_code": "INTERNAL"},
    )


@app.get("/health")
async def health():
    """
    Simple health check for load balancers and uptime monitors.

    Returns:
        - 200: Database reachable
        - 503: Database unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database": "unavailable",
            }
        )

    return {
        "status": "healthy",
        "timestamp": time.time(),
    }


@app.get("/ping")
async def ping():
    """
    Minimal ping endpoint for uptime monitors.
    No dependencies checked - just confirms the API is responding.
    """
    return {"pong": True}


# Include routers
app.include_router(auth.router)
app.include_router(invitations.router)
app.include_router(profiles.router)
app.include_router(users.router)
app.include_router(audit_logs.router)
app.include_router(hsk.router)
