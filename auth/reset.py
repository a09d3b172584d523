"""
auth/reset.py -- Single-use, time-limited password reset tokens.

Security design decisions:
  Generation: secrets.token_hex(20) -- 20 random bytes rendered as 40 hex
       characters. The plaintext goes out by email and is never stored.

  Storage: SHA-256 of the plaintext. A fast deterministic hash is enough
       because the input has 160 bits of entropy (same reasoning as API keys
       vs passwords), and it allows an indexed lookup by hash.

  Expiry: absolute, reset_token_expire_seconds (10 minutes) after generation.
       Requesting a new reset overwrites the previous token.

  Consume: one conditional UPDATE writes the new password hash and clears
       both reset fields, re-checking hash and expiry in its WHERE clause.
       A second consume of the same token, an expired token and an unknown
       token all raise ResetTokenInvalid with one shared message.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth import notices
from auth.credentials import check_password_policy, hash_password, normalize_email
from auth.errors import NotFoundError, ResetTokenInvalid, ValidationError
from auth.models import AuthOutcome, Notification, User
from auth.store import UserStore, format_timestamp
from core.config import AuthConfig

logger = logging.getLogger("progresstrack.auth.reset")

RESET_TOKEN_BYTES = 20


def hash_reset_token(plain: str) -> str:
    """Return the SHA-256 hex digest stored in place of the plaintext token."""
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResetTokenService:
    """Issues and redeems password reset tokens.

    clock is injectable so tests can move past the 10-minute window without
    sleeping.
    """

    def __init__(self, store: UserStore, config: AuthConfig, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    def generate(self, user: User) -> str:
        """Create a reset token for user and return the plaintext.

        Only the hash and expiry are persisted.
        """
        plain = secrets.token_hex(RESET_TOKEN_BYTES)
        expiry = self._clock() + timedelta(seconds=self._config.reset_token_expire_seconds)
        if not self._store.set_reset_token(user.id, hash_reset_token(plain), format_timestamp(expiry)):
            raise NotFoundError("User not found")
        logger.info("Reset token issued for user %s", user.id)
        return plain

    def request_reset(self, email: str | None) -> tuple[User, Notification]:
        """Start the forgot-password flow for email.

        Returns the user and the reset email to deliver. The caller must send
        it before answering; if delivery fails it should call cancel(user.id).
        """
        if not (email and email.strip()):
            raise ValidationError("Please provide an email")
        user = self._store.get_by_email(normalize_email(email))
        if user is None:
            raise NotFoundError("No user found with that email")
        plain = self.generate(user)
        return user, notices.reset_link(user, self._config, plain)

    def cancel(self, user_id: str) -> None:
        """Drop a pending reset token, e.g. after the email could not be sent."""
        self._store.clear_reset_token(user_id)

    def consume(self, plain_token: str | None, new_password: str | None) -> AuthOutcome:
        """Redeem plain_token and set new_password. Effects: confirmation email.

        Raises ResetTokenInvalid if the token is unknown, expired or already
        used.
        """
        if not new_password:
            raise ValidationError("Please provide a new password")
        check_password_policy(new_password)
        if not plain_token:
            raise ResetTokenInvalid()

        token_hash = hash_reset_token(plain_token)
        now_iso = format_timestamp(self._clock())
        user = self._store.get_by_reset_token(token_hash, now_iso)
        if user is None:
            raise ResetTokenInvalid()

        password_hash = hash_password(new_password, self._config.bcrypt_rounds)
        if not self._store.consume_reset_token(user.id, token_hash, now_iso, password_hash):
            # Another request redeemed or replaced the token in the meantime.
            raise ResetTokenInvalid()

        user.reset_token_hash = None
        user.reset_token_expiry = None
        logger.info("Password reset completed for user %s", user.id)
        return AuthOutcome(user=user, effects=[notices.password_changed(user, via_reset=True)])
