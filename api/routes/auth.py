"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /auth/register                -- create account; 201 + token
  POST /auth/login                   -- password login; 200 + token
  POST /auth/forgotpassword          -- email a reset link
  PUT  /auth/resetpassword/{token}   -- redeem reset token; 200 + fresh token
  GET  /auth/me                      -- current user (requires auth)
  PUT  /auth/updatedetails           -- partial name/email update (requires auth)
  PUT  /auth/updatepassword          -- change password (requires auth); 200 + fresh token

Handlers are plain `def`, not `async def`: bcrypt is CPU-bound, and FastAPI
runs sync handlers in its threadpool so hashing never blocks the event loop.

Failures are raised as auth.errors.AuthError subclasses and rendered by the
exception handler in api/main.py. Post-commit notifications are attached to
the response as background tasks; they run after the body is sent and their
failures are only logged. The reset email is the exception -- it is sent
inline because the request is pointless if it cannot be delivered.

Security:
  [C1] CredentialManager.authenticate() provides timing equalization.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    UserProfile,
    UserSummary,
)
from auth.credentials import CredentialManager
from auth.dependencies import get_current_user
from auth.models import Notification, ProfileUpdate, User
from auth.reset import ResetTokenService
from auth.tokens import TokenService
from notify.mailer import dispatch

logger = logging.getLogger("progresstrack.api.auth")

# Auth policy:
# - POST /auth/register, /auth/login, /auth/forgotpassword: public
# - PUT  /auth/resetpassword/{token}: public -- the token in the path is the credential
# - GET  /auth/me, PUT /auth/updatedetails, PUT /auth/updatepassword: get_current_user
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _schedule(request: Request, background_tasks: BackgroundTasks, effects: list[Notification]) -> None:
    if effects:
        background_tasks.add_task(dispatch, request.app.state.notifier, effects)


def _token_response(status_code: int, body: TokenResponse) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Create an account and sign it in."""
    credentials: CredentialManager = request.app.state.credentials
    tokens: TokenService = request.app.state.tokens

    client_ip = request.client.host if request.client else "Unknown"
    outcome = credentials.register(body.name, body.email, body.password, client_ip=client_ip)
    _schedule(request, background_tasks, outcome.effects)
    return _token_response(
        201,
        AuthResponse(
            message="User registered successfully",
            token=tokens.issue(outcome.user.id),
            user=UserSummary.from_user(outcome.user),
        ),
    )


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email and wrong password produce the same 401 body.
    """
    credentials: CredentialManager = request.app.state.credentials
    tokens: TokenService = request.app.state.tokens

    client_ip = request.client.host if request.client else "Unknown"
    outcome = credentials.authenticate(body.email, body.password, client_ip=client_ip)
    _schedule(request, background_tasks, outcome.effects)
    return _token_response(
        200,
        AuthResponse(
            message="Login successful",
            token=tokens.issue(outcome.user.id),
            user=UserSummary.from_user(outcome.user),
        ),
    )


@router.post("/auth/forgotpassword", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Issue a reset token and email the link.

    Delivery happens inline. If it fails the pending token is dropped and
    the caller gets a 500 to retry.
    """
    resets: ResetTokenService = request.app.state.resets

    user, notification = resets.request_reset(body.email)
    try:
        request.app.state.notifier.send(notification)
    except Exception:
        resets.cancel(user.id)
        raise
    return MessageResponse(message="Password reset email sent")


@router.put("/auth/resetpassword/{reset_token}", response_model=TokenResponse)
def reset_password(
    request: Request,
    reset_token: str,
    body: ResetPasswordRequest,
    background_tasks: BackgroundTasks,
) -> JSONResponse:
    """Redeem a reset token, set the new password and sign the user in."""
    resets: ResetTokenService = request.app.state.resets
    tokens: TokenService = request.app.state.tokens

    outcome = resets.consume(reset_token, body.password)
    _schedule(request, background_tasks, outcome.effects)
    return _token_response(
        200,
        TokenResponse(message="Password reset successful", token=tokens.issue(outcome.user.id)),
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=ProfileResponse)
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the currently authenticated user."""
    return JSONResponse(content=ProfileResponse(user=UserProfile.from_user(current_user)).model_dump(by_alias=True))


@router.put("/auth/updatedetails", response_model=ProfileResponse)
def update_details(
    request: Request,
    body: UpdateDetailsRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change name and/or email. Keys left out of the body are not touched."""
    credentials: CredentialManager = request.app.state.credentials

    updated = credentials.update_profile(current_user.id, ProfileUpdate(name=body.name, email=body.email))
    return JSONResponse(content=ProfileResponse(user=UserProfile.from_user(updated)).model_dump(by_alias=True))


@router.put("/auth/updatepassword", response_model=TokenResponse)
def update_password(
    request: Request,
    body: UpdatePasswordRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the password and return a fresh token.

    Tokens issued before the change stay valid until they expire.
    """
    credentials: CredentialManager = request.app.state.credentials
    tokens: TokenService = request.app.state.tokens

    outcome = credentials.change_password(current_user.id, body.current_password, body.new_password)
    _schedule(request, background_tasks, outcome.effects)
    return _token_response(
        200,
        TokenResponse(message="Password updated", token=tokens.issue(outcome.user.id)),
    )
