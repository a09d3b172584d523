"""
auth/dependencies.py -- Bearer-token gate and its FastAPI Depends() helper.

A request moves through:
  no token -> token present -> verified -> user loaded
and can be rejected at each step:
  1. No "Authorization: Bearer <token>" header   -> Unauthenticated
  2. TokenService.verify() fails                 -> TokenInvalid / TokenExpired
  3. The account named by the token is gone      -> UserNotFound

All rejections are AuthError subclasses with status 401; the API exception
handler renders them.

get_current_user() is the dependency routes use. It stores the loaded user
on request.state.user -- the only way identity crosses from this gate into
handlers.

Layer rule: no imports from api/ or notify/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import Unauthenticated, UserNotFound
from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("progresstrack.auth.gate")

_BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an Authorization header value, or None."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class AuthGate:
    """Turns an Authorization header into a loaded User (without password hash)."""

    def __init__(self, tokens: TokenService, store: UserStore) -> None:
        self._tokens = tokens
        self._store = store

    def authenticate(self, authorization: str | None) -> User:
        token = extract_bearer_token(authorization)
        if token is None:
            raise Unauthenticated()

        # Raises TokenInvalid / TokenExpired
        user_id = self._tokens.verify(token)

        user = self._store.get_by_id(user_id)
        if user is None:
            logger.info("Token for missing user %s rejected", user_id)
            raise UserNotFound()
        return user


def get_current_user(request: Request) -> User:
    """Require a valid bearer token. Raises a 401 AuthError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    gate: AuthGate = request.app.state.auth_gate
    user = gate.authenticate(request.headers.get("Authorization"))
    request.state.user = user
    return user
