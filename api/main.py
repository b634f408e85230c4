"""
api/main.py -- FastAPI application entry point for the E-Tax API auth core.

Run with:  uvicorn asgi:app --reload

Middleware stack (registration order; Starlette wraps the last one outermost):
  1. CORSMiddleware        -- answers preflights and tags allowed origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. security_headers      -- frame, sniffing, referrer, CSP, HSTS headers
  4. log_requests          -- one access-log line per request, unhandled errors as 500

Lifespan builds the auth components once and publishes them on app.state:
  auth_store, hasher, tokens, sessions, tracker, auth_service.
Route handlers and the gates read them from there; nothing is module-global
except the limiter, which is attached to app.state as well.

Error contract: every error response is {"error": "<message>"}. AuthError
subclasses carry their own status; request validation failures are 400;
anything unexpected is a logged 500 with a generic message.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import protected as auth_protected_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.lockout import LoginAttemptTracker
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.tokens import TokenService
from core.config import get_settings

__version__ = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("etax.api")


def build_auth_components(app: FastAPI, store: AuthStore, settings) -> None:
    """Wire the auth components around a store and publish them on app.state.

    Shared by the real lifespan and the test fixtures so both assemble the
    graph the same way.
    """
    hasher = PasswordHasher.from_settings(settings)
    tokens = TokenService.from_settings(settings)
    sessions = SessionManager(store, ttl=timedelta(hours=settings.session_ttl_hours))
    tracker = LoginAttemptTracker.from_settings(store, settings)
    app.state.auth_store = store
    app.state.hasher = hasher
    app.state.tokens = tokens
    app.state.sessions = sessions
    app.state.tracker = tracker
    app.state.auth_service = AuthService(store, hasher, tokens, sessions, tracker)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build auth components on startup; dispose of the store on shutdown.

    get_settings() raises here if SECRET_KEY is missing outside debug mode,
    so a misconfigured server never starts accepting requests.
    """
    settings = get_settings()
    logger.info("E-Tax API starting up")
    store = AuthStore(settings.database_url)
    build_auth_components(app, store, settings)
    logger.info(
        "Auth initialized (access_ttl=%dm refresh_ttl=%dd lockout=%d/%dm)",
        settings.access_token_ttl_minutes,
        settings.refresh_token_ttl_days,
        settings.lockout_max_failures,
        settings.lockout_window_minutes,
    )

    yield

    app.state.auth_store.close()
    logger.info("E-Tax API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="E-Tax API",
    description="Authentication and session security for the E-Tax invoicing back office.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept", "Authorization", "X-Session-Token"],
    max_age=86400,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Attach defensive response headers to every routed response.

    The catch-all 500 is rendered outside the middleware stack and carries
    only the error envelope.
    """
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
    if request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Write one access line per request.

    An unhandled exception propagates out of call_next and is rendered by the
    catch-all handler further out, so it is logged here as a 500.
    """
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            status_code,
            ms,
            request.client.host if request.client else "unknown",
        )


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(auth_protected_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": message} envelope so API clients can
# parse errors uniformly.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    response = _error(exc.status_code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    response = _error(429, "Too many requests. Please try again later.")
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first offending field. Input values are not echoed."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "invalid")
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures, including store errors.

    The traceback goes to the log only. The client never sees internals.
    """
    if isinstance(exc, SQLAlchemyError):
        logger.exception("Store failure on %s %s", request.method, request.url.path)
    else:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# No rate limit and no auth -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability."""
    try:
        database = "ok" if request.app.state.auth_store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})
