"""
api/main.py -- FastAPI application entry point for the platform.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces rate limits from api.limiter
  4. log_requests          -- one access-log line per request

Lifespan opens the document store on startup, wires every repository onto
app.state, and disposes the engine on shutdown.

Every error leaves the API in the same shape: {"error": ..., "message": ...}.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, StatusResponse
from api.routes.apps import router as apps_router
from api.routes.auth import router as auth_router
from api.routes.reports import router as reports_router
from api.routes.settings import router as settings_router
from api.routes.teams import router as teams_router
from api.routes.users import router as users_router
from api.routes.views import router as views_router
from api.routes.vulns import router as vulns_router
from auth.store import RefreshTokenStore, UserStore
from core.config import get_settings
from core.documents import DocumentStore
from core.errors import TrackerError
from tracker.store import (
    ApplicationStore,
    ReportStore,
    SavedViewStore,
    SlaSettingsStore,
    TeamStore,
    VulnerabilityStore,
)

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vmp.api")

# ---------------------------------------------------------------------------
# Store wiring
# ---------------------------------------------------------------------------


def attach_stores(app: FastAPI, documents: DocumentStore) -> None:
    """Put one repository per collection on app.state.

    Route handlers read these attributes; tests call this with an in-memory
    DocumentStore instead of running the real lifespan.
    """
    app.state.documents = documents
    app.state.user_store = UserStore(documents)
    app.state.refresh_tokens = RefreshTokenStore(documents)
    app.state.teams = TeamStore(documents)
    app.state.applications = ApplicationStore(documents)
    app.state.reports = ReportStore(documents)
    app.state.vulns = VulnerabilityStore(documents)
    app.state.views = SavedViewStore(documents)
    app.state.sla_settings = SlaSettingsStore(documents)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the document store on startup and dispose it on shutdown.

    The SLA settings document is read once here so the defaults exist
    before the first request.
    """
    logger.info("Vulnerability Management Platform API starting up")
    documents = DocumentStore(_settings.database_url)
    attach_stores(app, documents)
    sla = app.state.sla_settings.get()
    logger.info(
        "Document store ready (auto_assign_due_dates=%s, timelines=%s, users=%s)",
        sla.auto_assign_due_dates,
        sla.due_date_timelines,
        app.state.user_store.has_users(),
    )

    yield

    documents.close()
    logger.info("Vulnerability Management Platform API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Vulnerability Management Platform API",
    description="Track security findings across applications, teams and vendor reports with due-date SLAs.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(teams_router, prefix="/api", tags=["Teams"])
app.include_router(apps_router, prefix="/api", tags=["Applications"])
app.include_router(reports_router, prefix="/api", tags=["Reports"])
app.include_router(vulns_router, prefix="/api", tags=["Vulnerabilities"])
app.include_router(views_router, prefix="/api", tags=["Saved Views"])
app.include_router(settings_router, prefix="/api", tags=["Settings"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, message=message).model_dump())


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    """Render domain errors (401/403/400/404/409) raised by stores and policies."""
    if exc.status_code in (401, 403):
        logger.info("%s %s denied: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.error, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too Many Requests", f"Rate limit exceeded: {exc.detail}")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are 400 Validation Error.

    The message lists each failing location, e.g. "body.severity: Input
    should be 'Critical', 'High', 'Medium' or 'Low'".
    """
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return _error(400, "Validation Error", "; ".join(parts) or "Request validation failed")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (404 route not found, 405 method) in the same envelope."""
    labels = {404: "Not Found", 405: "Method Not Allowed"}
    return _error(exc.status_code, labels.get(exc.status_code, "HTTP Error"), str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception is logged, never returned: the client receives only a
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal Server Error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Status endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable.
# Public and not rate limited -- monitoring must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/status", response_model=StatusResponse, tags=["Status"])
@limiter.exempt
async def status() -> StatusResponse:
    """Return API liveness, server time and version."""
    return StatusResponse(timestamp=datetime.now(timezone.utc), version=VERSION)


@app.get("/health", response_model=HealthResponse, tags=["Status"])
@limiter.exempt
def health(request: Request) -> HealthResponse:
    """Report app and database component status for load balancers."""
    database_ok = request.app.state.documents.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
