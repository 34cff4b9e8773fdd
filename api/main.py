"""
api/main.py -- FastAPI application entry point for Stallmarket.

Run with:      uvicorn asgi:app --reload

Middleware, outermost first (the access-log middleware wraps them all):
  TrustedHostMiddleware  Host header must be in ALLOWED_HOSTS
  CORSMiddleware         browser origins from CORS_ORIGINS
  SlowAPIMiddleware      login and OTP-mail limits declared in api/routes/v1/auth.py

Lifespan builds every process-wide collaborator once and parks it on
app.state: the UserStore, the TokenService (with its immutable TokenConfig),
the Notifier, the AuthService that composes them, and the access policy the
guard pipeline consults. Shutdown disposes the store's connection pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.guards import ACCESS_POLICY
from auth.notifications import build_notifier
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenConfig, TokenService
from core.config import get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("stallmarket.api")
access_logger = logging.getLogger("stallmarket.access")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build process-wide collaborators on startup; release them on shutdown.

    Startup order matters: the AuthService is composed from the store, the
    token service and the notifier, so those exist first.
    """
    logger.info("Stallmarket API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.token_service = TokenService(TokenConfig.from_settings(_settings))
    app.state.notifier = build_notifier(_settings)
    app.state.auth_service = AuthService(app.state.user_store, app.state.token_service, app.state.notifier)
    app.state.access_policy = ACCESS_POLICY
    app.state.dev_endpoints_enabled = _settings.dev_endpoints_enabled
    logger.info(
        "Auth initialized (mail_provider=%s, token_ttl=%ds, dev_endpoints=%s)",
        _settings.mail_provider,
        _settings.token_expire_seconds,
        _settings.dev_endpoints_enabled,
    )

    yield

    app.state.user_store.close()
    logger.info("Stallmarket API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Stallmarket API",
    description="Accounts, email verification, and role-based access for the Stallmarket marketplace.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps everything registered before it, so the
# last one added sees the request first. Registered innermost-first to get
# TrustedHost -> CORS -> SlowAPI. log_requests below wraps all three.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access line per request. Bodies and headers are never logged; they carry credentials."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "-"
    access_logger.info(
        "%s %s -> %d in %.1fms from %s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        client,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure, business or framework, leaves as {"error": {code, message, detail}}.
# code is stable and machine-readable; message is safe to show a user.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a business failure from the orchestrator or the guard pipeline."""
    response = _error(exc.status_code, exc.kind.value, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    # The window of the breached limit, e.g. 60 for "10/minute".
    item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = item.get_expiry() if item is not None else 60
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body, path or query parameters failed their pydantic constraints."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 on unknown paths, 405, dev-route 404s) in the envelope.

    A dict detail is already shaped as {code, message} and is passed through.
    """
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Storage failures never leak driver or SQL text to the client."""
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return _error(500, "storage_error", "A storage error occurred. Please try again later.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a bug. The traceback goes to the log, the client gets a fixed message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# load balancers must not be throttled or challenged.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and per-component status."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components={"app": "ok", "database": database})
