"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and services do the work.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class NotificationPreferences:
    email_notifications: bool = True
    login_alerts: bool = True


@dataclass
class User:
    """A registered account.

    email is always stored normalized (trimmed, lowercased). password_hash is
    None whenever the record was loaded through a default projection -- only
    the UserStore get_by_email / get_by_id lookups with with_password=True
    fill it in.

    reset_token_hash / reset_token_expiry are either both set (a reset is
    pending) or both None.
    """

    name: str
    email: str
    id: str | None = None
    password_hash: str | None = None
    reset_token_hash: str | None = None
    reset_token_expiry: str | None = None  # ISO 8601 UTC
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    created_at: str | None = None


@dataclass
class ProfileUpdate:
    """Partial profile update.

    None means "leave unchanged". An empty string is a supplied value and
    fails validation rather than being silently ignored.
    """

    name: str | None = None
    email: str | None = None

    def is_empty(self) -> bool:
        return self.name is None and self.email is None


@dataclass
class Notification:
    """A templated email the caller should deliver after the operation."""

    recipient: str
    subject: str
    template_name: str
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthOutcome:
    """Result of a state-changing auth operation plus its post-commit effects."""

    user: User
    effects: list[Notification] = field(default_factory=list)
