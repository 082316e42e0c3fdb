"""FastAPI application for the iSuite chat API.

Provides the main application instance with routers, middleware,
and exception handlers configured.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version
from typing import Any

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.middleware.auth import get_login_url, validate_proxy_secret_strength
from src.api.routes import auth, connections, conversations
from src.db.connection import close_db, init_db
from src.errors import (
    ConflictError,
    DomainError,
    IntegrationError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
    build_error_payload,
)
from src.services.completion_service import validate_completion_config
from src.services.integrations_client import validate_integrations_config

logger = logging.getLogger(__name__)

# Module-level state for health endpoint
_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: config validation + shutdown cleanup."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()

    # Fail fast on a weak proxy secret
    validate_proxy_secret_strength()
    validate_completion_config()
    validate_integrations_config()

    init_db()

    logger.warning(
        "iSuite runtime policy: single-worker mode only. Live sessions and "
        "turn event queues are held in process memory."
    )

    yield

    # --- Shutdown ---
    await conversations.shutdown_conversation_runtime()
    await connections.shutdown_integrations_client()
    close_db()


app = FastAPI(
    title="iSuite API",
    description="Chat assistant that acts through the user's connected apps",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


def _error_response(status_code: int, code: str, **context: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": build_error_payload(code, **context)},
    )


@app.exception_handler(UnauthorizedError)
async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
    """Map missing identity to 401 with the login URL to redirect to."""
    payload = build_error_payload("E-5001")
    payload["login_url"] = get_login_url()
    return JSONResponse(status_code=401, content={"error": payload})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(
        404, "E-1001", resource=exc.resource_type, identifier=exc.identifier
    )


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return _error_response(409, "E-1002", message=str(exc))


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(400, "E-1003", message=str(exc))


@app.exception_handler(IntegrationError)
async def integration_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    logger.warning("Integration request failed: %s", exc)
    return _error_response(502, exc.error_code, message=str(exc))


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Persistence failure: %s", exc)
    return _error_response(500, "E-4002", message=exc.operation)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Catch-all for domain errors without a dedicated handler."""
    logger.error("Unhandled domain error: %s", exc)
    return _error_response(500, "E-4001", message=str(exc))


# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(conversations.router, prefix="/api/v1")
app.include_router(connections.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status, package version and uptime.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0

    # Version from package metadata (matches pyproject.toml)
    try:
        version = _pkg_version("isuite")
    except Exception:
        version = "unknown"

    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
    }


@app.get("/readyz")
def readiness_check():
    """Dependency-aware readiness check for local/container deployments."""
    from sqlalchemy import text

    from src.db.connection import get_db_context

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    checks: dict[str, dict[str, Any]] = {}

    # DB connectivity gate.
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "uptime_seconds": uptime,
                "checks": {
                    "database": {"status": "error", "message": str(exc)},
                },
            },
        )

    status = "ready"
    for check_name, env_key in (
        ("completion_provider", "ANTHROPIC_API_KEY"),
        ("integrations", "COMPOSIO_API_KEY"),
    ):
        if os.environ.get(env_key, "").strip():
            checks[check_name] = {"status": "configured"}
        else:
            checks[check_name] = {"status": "degraded", "missing": [env_key]}
            status = "degraded"

    return {
        "status": status,
        "uptime_seconds": uptime,
        "checks": checks,
    }


@app.get("/api")
def api_root() -> dict:
    """API root with links to docs."""
    return {
        "name": "iSuite API",
        "version": "0.1.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }
