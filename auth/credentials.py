"""
auth/credentials.py -- Password hashing and the account lifecycle rules.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Every hash gets a
       fresh random salt from bcrypt.gensalt(), so hashing the same password
       twice yields two different strings that both verify. The work factor
       comes from AuthConfig.bcrypt_rounds (default 10).

  bcrypt only looks at the first 72 bytes of input. Longer passwords are
       rejected up front instead of being silently truncated.

  Timing equalization [C1]: authenticate() always runs one bcrypt check,
       against a dummy hash when the email is unknown, so response time does
       not reveal whether an account exists. The error raised is the same
       InvalidCredentials in both cases.

  Registration races: the get_by_email() pre-check is advisory. The UNIQUE
       index on email decides; an IntegrityError from create_user() is the
       losing side of a race and becomes ConflictError.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth import notices
from auth.errors import ConflictError, InvalidCredentials, NotFoundError, ValidationError
from auth.models import AuthOutcome, ProfileUpdate, User
from auth.store import UserStore
from core.config import AuthConfig

logger = logging.getLogger("progresstrack.auth.credentials")

NAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_BYTES = 72

# Local part and domain are word runs joined by single '.' or '-', ending in a
# 2-3 character TLD. Written without nested optional groups to avoid
# catastrophic backtracking on long inputs.
EMAIL_PATTERN = re.compile(r"^\w+(?:[.-]\w+)*@\w+(?:[.-]\w+)*\.\w{2,3}$")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 10) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


@lru_cache
def _dummy_hash(rounds: int) -> str:
    # Same cost factor as real hashes, so the dummy check takes as long.
    return hash_password("progresstrack_timing_dummy", rounds)


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("Please add a name")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name cannot be more than {NAME_MAX_LENGTH} characters")
    return cleaned


def _clean_email(email: str) -> str:
    cleaned = normalize_email(email)
    if len(cleaned) > 254 or not EMAIL_PATTERN.match(cleaned):
        raise ValidationError("Please add a valid email")
    return cleaned


def check_password_policy(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password cannot be longer than {PASSWORD_MAX_BYTES} bytes")


# ---------------------------------------------------------------------------
# Account lifecycle
# ---------------------------------------------------------------------------


class CredentialManager:
    """Registers accounts, checks passwords and applies profile changes.

    Usage:
        manager = CredentialManager(store, settings.auth_config())
        outcome = manager.register("Ann", "ann@x.com", "abcdef")
        outcome = manager.authenticate("ann@x.com", "abcdef")
    """

    def __init__(self, store: UserStore, config: AuthConfig) -> None:
        self._store = store
        self._config = config

    def hash(self, plain: str) -> str:
        return hash_password(plain, self._config.bcrypt_rounds)

    def register(
        self, name: str | None, email: str | None, password: str | None, client_ip: str = "Unknown"
    ) -> AuthOutcome:
        """Create an account. Effects: welcome email.

        Raises ValidationError for missing or malformed input and ConflictError
        when the normalized email is taken. The conflict carries an alert to
        the existing owner when they have email notifications on.
        """
        if not (name and name.strip()) or not (email and email.strip()) or not password:
            raise ValidationError("Please provide name, email and password")
        clean_name = _clean_name(name)
        clean_email = _clean_email(email)
        check_password_policy(password)

        existing = self._store.get_by_email(clean_email)
        if existing is not None:
            logger.info("Registration rejected for existing account %s", existing.id)
            effects = []
            if existing.preferences.email_notifications:
                effects.append(notices.registration_alert(existing, self._config, ip=client_ip))
            raise ConflictError(effects=effects)

        new_user = User(name=clean_name, email=clean_email, password_hash=self.hash(password))
        try:
            user_id = self._store.create_user(new_user)
        except IntegrityError as exc:
            # Lost the race against a concurrent registration for the same email.
            raise ConflictError() from exc

        created = self._store.get_by_id(user_id)
        if created is None:
            raise NotFoundError("User not found after write.")
        logger.info("Registered user %s", created.id)
        return AuthOutcome(user=created, effects=[notices.welcome(created, self._config)])

    def authenticate(self, email: str | None, password: str | None, client_ip: str = "Unknown") -> AuthOutcome:
        """Check an email/password pair. Effects: login alert when enabled.

        Raises InvalidCredentials with the same message whether the email is
        unknown or the password is wrong. Only after the password check has
        failed on a real account is a failed-login alert attached.
        """
        if not (email and email.strip()) or not password:
            raise ValidationError("Please provide email and password")

        user = self._store.get_by_email(normalize_email(email), with_password=True)
        if user is None or not user.password_hash:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, _dummy_hash(self._config.bcrypt_rounds))
            raise InvalidCredentials()

        if not verify_password(password, user.password_hash):
            logger.info("Failed login for user %s", user.id)
            effects = []
            if user.preferences.login_alerts:
                effects.append(notices.login_alert(user, self._config, succeeded=False, ip=client_ip))
            raise InvalidCredentials(effects=effects)

        user.password_hash = None
        effects = []
        if user.preferences.login_alerts:
            effects.append(notices.login_alert(user, self._config, succeeded=True, ip=client_ip))
        return AuthOutcome(user=user, effects=effects)

    def change_password(self, user_id: str, current_password: str | None, new_password: str | None) -> AuthOutcome:
        """Replace the password after re-checking the current one.

        Previously issued session tokens stay valid until they expire; there
        is no revocation list.
        """
        if not current_password or not new_password:
            raise ValidationError("Please provide current and new password")
        check_password_policy(new_password)

        user = self._store.get_by_id(user_id, with_password=True)
        if user is None:
            raise NotFoundError("User not found")
        if not user.password_hash or not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Password is incorrect")

        if not self._store.set_password(user_id, self.hash(new_password)):
            raise NotFoundError("User not found")
        user.password_hash = None
        logger.info("Password changed for user %s", user_id)

        effects = []
        if user.preferences.email_notifications:
            effects.append(notices.password_changed(user))
        return AuthOutcome(user=user, effects=effects)

    def update_profile(self, user_id: str, update: ProfileUpdate) -> User:
        """Apply a partial profile update. Omitted fields keep their values."""
        if update.is_empty():
            raise ValidationError("Please provide a name or email to update")

        fields: dict = {}
        if update.name is not None:
            fields["name"] = _clean_name(update.name)
        if update.email is not None:
            fields["email"] = _clean_email(update.email)

        current = self._store.get_by_id(user_id)
        if current is None:
            raise NotFoundError("User not found")

        if "email" in fields and fields["email"] != current.email:
            other = self._store.get_by_email(fields["email"])
            if other is not None and other.id != user_id:
                raise ConflictError()

        try:
            updated = self._store.update_user(user_id, **fields)
        except IntegrityError as exc:
            raise ConflictError() from exc
        if not updated:
            raise NotFoundError("User not found")

        refreshed = self._store.get_by_id(user_id)
        if refreshed is None:
            raise NotFoundError("User not found")
        return refreshed
