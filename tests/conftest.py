"""
tests/conftest.py -- Shared test fixtures for ProgressTrack auth tests.

This module provides:
  - RecordingNotifier: NotificationService fake that keeps sent messages
  - auth_config / store / credentials / tokens / resets: unit-level fixtures
  - api_client: TestClient wired to an isolated file-backed store
  - unconfigured_mail_client: same, but with a real SmtpNotifier and no SMTP_HOST

Design: the TestClient fixture uses a SQLite file under tmp_path because route
handlers run in a thread pool and each worker thread opens its own
connection. Unit fixtures use :memory:, which UserStore serves from a single
shared connection.

bcrypt runs with 4 rounds (the minimum) so the suite stays fast; the cost
factor does not change any behaviour under test.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.credentials import CredentialManager
from auth.errors import DependencyError
from auth.models import Notification
from auth.reset import ResetTokenService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import AuthConfig, Settings
from notify.mailer import NotificationService, SmtpNotifier

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


class RecordingNotifier:
    """Collects notifications instead of sending them.

    Set fail=True to make every send() raise DependencyError, as an
    unreachable SMTP server would.
    """

    def __init__(self) -> None:
        self.sent: list[Notification] = []
        self.fail = False

    def send(self, notification: Notification) -> None:
        if self.fail:
            raise DependencyError("Email could not be sent. Please try again.")
        self.sent.append(notification)

    def templates(self) -> list[str]:
        return [n.template_name for n in self.sent]

    def clear(self) -> None:
        self.sent.clear()


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(secret_key=TEST_SECRET, bcrypt_rounds=4, client_url="http://client.test")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def credentials(store: UserStore, auth_config: AuthConfig) -> CredentialManager:
    return CredentialManager(store, auth_config)


@pytest.fixture
def tokens(auth_config: AuthConfig) -> TokenService:
    return TokenService(auth_config)


@pytest.fixture
def resets(store: UserStore, auth_config: AuthConfig) -> ResetTokenService:
    return ResetTokenService(store, auth_config)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore, notifier, config: AuthConfig):
    """Return a lifespan that wires the test store and notifier into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, store, notifier, config)
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path, auth_config: AuthConfig) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) backed by a fresh SQLite file.

    Function-scoped: each test starts with no users and an empty outbox.
    """
    user_store = UserStore(f"sqlite:///{tmp_path / 'auth.db'}")
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(user_store, notifier, auth_config)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier

    user_store.close()


@pytest.fixture
def unconfigured_mail_client(tmp_path, auth_config: AuthConfig) -> Generator[TestClient, None, None]:
    """Yield a client whose notifier is a production SmtpNotifier with no SMTP_HOST."""
    user_store = UserStore(f"sqlite:///{tmp_path / 'auth.db'}")
    notifier = SmtpNotifier(Settings(secret_key=TEST_SECRET, debug=False, smtp_host=""))

    app.router.lifespan_context = _patch_lifespan(user_store, notifier, auth_config)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    user_store.close()
