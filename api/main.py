"""
api/main.py -- FastAPI application entry point for ProgressTrack auth.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- allows the browser client at Settings.client_url
  2. log_requests   -- one log line per request with latency

Lifespan builds the long-lived objects once and parks them on app.state:
  user_store   -- UserStore (SQLAlchemy engine)
  notifier     -- SmtpNotifier
  credentials  -- CredentialManager
  tokens       -- TokenService
  resets       -- ResetTokenService
  auth_gate    -- AuthGate used by auth.dependencies.get_current_user
None of them hold per-request mutable state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException

from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.credentials import CredentialManager
from auth.dependencies import AuthGate
from auth.errors import AuthError
from auth.reset import ResetTokenService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import AuthConfig, get_settings
from notify.mailer import NotificationService, SmtpNotifier, dispatch

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("progresstrack.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, store: UserStore, notifier: NotificationService, config: AuthConfig) -> None:
    """Build the auth services around store/notifier and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both wire the app
    identically.
    """
    tokens = TokenService(config)
    app.state.user_store = store
    app.state.notifier = notifier
    app.state.credentials = CredentialManager(store, config)
    app.state.tokens = tokens
    app.state.resets = ResetTokenService(store, config)
    app.state.auth_gate = AuthGate(tokens, store)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the user store on startup and dispose of it on shutdown."""
    logger.info("ProgressTrack auth API starting up")
    store = UserStore(_settings.database_url, timeout_seconds=_settings.store_timeout_seconds)
    install_services(app, store, SmtpNotifier(_settings), _settings.auth_config())
    logger.info("Auth initialized (smtp_enabled=%s)", bool(_settings.smtp_host))

    yield

    app.state.user_store.close()
    logger.info("ProgressTrack auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ProgressTrack Auth API",
    description="Account registration, login, session tokens and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.client_url.rstrip("/")],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; wall-clock time around call_next gives the latency.
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

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {success: false, message} envelope so clients
# can parse errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, message: str, error: str | None = None, **kwargs) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=error).model_dump(exclude_none=True),
        **kwargs,
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain failure and still deliver any effects it carries.

    A failed login, for example, answers 401 and emails the account owner
    an alert in the background.
    """
    background = None
    if exc.effects:
        background = BackgroundTask(dispatch, request.app.state.notifier, exc.effects)
    return _error_response(exc.status_code, exc.message, background=background)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the request body or path params fail schema validation."""
    return _error_response(
        400,
        "Request validation failed.",
        error=str(exc.errors()) if _settings.debug else None,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for Starlette HTTP exceptions (unknown route, wrong method, ...).

    Registered on the Starlette base class so router-level 404/405 are caught
    as well as FastAPI's HTTPException subclass.
    """
    message = exc.detail if isinstance(exc.detail, str) else f"HTTP {exc.status_code}"
    return _error_response(exc.status_code, message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. In debug mode the exception text is
    added to the body to speed up local development.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(
        500,
        "Something went wrong!",
        error=str(exc) if _settings.debug else None,
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    store: UserStore = request.app.state.user_store
    database = "ok" if store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
