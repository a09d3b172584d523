"""
auth/errors.py -- Domain error taxonomy for the auth services.

Every failure the services raise is an AuthError subclass. Each class knows
its HTTP status and a default client-facing message, so the API layer maps
errors to responses with one exception handler instead of per-route
try/except ladders.

effects: notifications that should still go out even though the operation
failed (e.g. a failed-login alert to the account owner). The exception
handler schedules them as background tasks, exactly like success effects.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import Notification


class AuthError(Exception):
    """Base class for all expected auth failures."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Request failed."

    def __init__(self, message: str | None = None, effects: list[Notification] | None = None) -> None:
        self.message = message or self.message
        self.effects: list[Notification] = list(effects or [])
        super().__init__(self.message)


class ValidationError(AuthError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"
    message = "Invalid input."


class ConflictError(AuthError):
    """An account already exists for the normalized email."""

    status_code = 400
    code = "conflict"
    message = "User with this email already exists"


class InvalidCredentials(AuthError):
    """Bad email/password pair. Never says which half was wrong."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials"


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthenticated"
    message = "Not authorized to access this route. Please login."


class TokenInvalid(AuthError):
    status_code = 401
    code = "token_invalid"
    message = "Not authorized to access this route. Token invalid."


class TokenExpired(AuthError):
    status_code = 401
    code = "token_expired"
    message = "Not authorized to access this route. Token expired."


class ResetTokenInvalid(TokenInvalid):
    """Unknown, expired or already-used reset token.

    The three cases share one message so the endpoint cannot be used as an
    oracle for guessing tokens.
    """

    status_code = 400
    code = "reset_token_invalid"
    message = "Invalid or expired token"


class UserNotFound(AuthError):
    """Token verified but the account it names no longer exists."""

    status_code = 401
    code = "user_not_found"
    message = "User not found. Please login again."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class DependencyError(AuthError):
    """The store or the mail transport is unavailable. Safe to retry."""

    status_code = 500
    code = "dependency_unavailable"
    message = "A required service is unavailable. Please try again."
