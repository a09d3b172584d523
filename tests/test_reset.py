"""Unit tests for auth/reset.py -- password reset tokens.

Covers:
- generate() returns 40 hex chars and stores only the SHA-256 hash + expiry
- consume() works exactly once per generate(), even when two threads race
- consume() after the 10-minute window fails even with the right token
- unknown tokens, replays and expiry all raise the same ResetTokenInvalid
- a newer token replaces an older one
- request_reset() for unknown emails, and cancel()
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from threading import Barrier

import pytest

from auth.credentials import CredentialManager
from auth.errors import InvalidCredentials, NotFoundError, ResetTokenInvalid, TokenInvalid, ValidationError
from auth.models import User
from auth.reset import ResetTokenService, hash_reset_token
from auth.store import UserStore
from core.config import AuthConfig


@pytest.fixture
def ann(credentials: CredentialManager) -> User:
    return credentials.register("Ann", "ann@x.com", "abcdef").user


class _Clock:
    """Settable clock for stepping over the reset window."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class TestGenerate:
    def test_token_shape(self, resets: ResetTokenService, ann: User) -> None:
        token = resets.generate(ann)
        assert len(token) == 40
        int(token, 16)  # hex

    def test_only_hash_is_stored(self, resets: ResetTokenService, store: UserStore, ann: User) -> None:
        token = resets.generate(ann)
        stored = store.get_by_id(ann.id)
        assert stored.reset_token_hash == hash_reset_token(token)
        assert stored.reset_token_hash != token
        assert stored.reset_token_expiry is not None

    def test_expiry_is_ten_minutes(self, store: UserStore, auth_config: AuthConfig, ann: User) -> None:
        clock = _Clock()
        ResetTokenService(store, auth_config, clock=clock).generate(ann)
        expiry = datetime.fromisoformat(store.get_by_id(ann.id).reset_token_expiry)
        assert expiry - clock.now == timedelta(minutes=10)

    def test_tokens_are_unique(self, resets: ResetTokenService, ann: User) -> None:
        assert resets.generate(ann) != resets.generate(ann)


class TestConsume:
    def test_consume_sets_new_password(
        self, resets: ResetTokenService, credentials: CredentialManager, store: UserStore, ann: User
    ) -> None:
        token = resets.generate(ann)
        outcome = resets.consume(token, "newpass1")

        assert outcome.user.id == ann.id
        assert [n.template_name for n in outcome.effects] == ["password_changed"]
        with pytest.raises(InvalidCredentials):
            credentials.authenticate("ann@x.com", "abcdef")
        assert credentials.authenticate("ann@x.com", "newpass1")
        stored = store.get_by_id(ann.id)
        assert stored.reset_token_hash is None and stored.reset_token_expiry is None

    def test_consume_only_once(self, resets: ResetTokenService, ann: User) -> None:
        token = resets.generate(ann)
        resets.consume(token, "newpass1")
        with pytest.raises(ResetTokenInvalid):
            resets.consume(token, "newpass2")

    def test_consume_after_expiry(
        self, store: UserStore, auth_config: AuthConfig, credentials: CredentialManager, ann: User
    ) -> None:
        clock = _Clock()
        service = ResetTokenService(store, auth_config, clock=clock)
        token = service.generate(ann)
        clock.now += timedelta(minutes=10, seconds=1)
        with pytest.raises(ResetTokenInvalid):
            service.consume(token, "newpass1")
        assert credentials.authenticate("ann@x.com", "abcdef")

    def test_consume_just_before_expiry(self, store: UserStore, auth_config: AuthConfig, ann: User) -> None:
        clock = _Clock()
        service = ResetTokenService(store, auth_config, clock=clock)
        token = service.generate(ann)
        clock.now += timedelta(minutes=9, seconds=59)
        assert service.consume(token, "newpass1").user.id == ann.id

    def test_unknown_token(self, resets: ResetTokenService, ann: User) -> None:
        resets.generate(ann)
        with pytest.raises(ResetTokenInvalid):
            resets.consume("0" * 40, "newpass1")

    def test_failures_share_one_message(self, resets: ResetTokenService, ann: User) -> None:
        token = resets.generate(ann)
        resets.consume(token, "newpass1")
        with pytest.raises(ResetTokenInvalid) as replay:
            resets.consume(token, "newpass2")
        with pytest.raises(ResetTokenInvalid) as unknown:
            resets.consume("f" * 40, "newpass2")
        assert replay.value.message == unknown.value.message == "Invalid or expired token"
        assert isinstance(replay.value, TokenInvalid)
        assert replay.value.status_code == 400

    def test_newer_token_replaces_older(self, resets: ResetTokenService, ann: User) -> None:
        first = resets.generate(ann)
        second = resets.generate(ann)
        with pytest.raises(ResetTokenInvalid):
            resets.consume(first, "newpass1")
        assert resets.consume(second, "newpass1")

    def test_password_policy_checked_first(self, resets: ResetTokenService, store: UserStore, ann: User) -> None:
        token = resets.generate(ann)
        with pytest.raises(ValidationError):
            resets.consume(token, "123")
        # Token is still usable after a rejected password.
        assert store.get_by_id(ann.id).reset_token_hash == hash_reset_token(token)
        assert resets.consume(token, "newpass1")

    def test_concurrent_consume_has_one_winner(self, tmp_path, auth_config: AuthConfig) -> None:
        """Two threads redeem the same token at once; the conditional UPDATE picks one."""
        file_store = UserStore(f"sqlite:///{tmp_path / 'reset_race.db'}", timeout_seconds=30)
        user = CredentialManager(file_store, auth_config).register("Ann", "ann@x.com", "abcdef").user
        service = ResetTokenService(file_store, auth_config)
        token = service.generate(user)
        barrier = Barrier(2)

        def attempt(password: str) -> str:
            barrier.wait()
            try:
                service.consume(token, password)
            except ResetTokenInvalid:
                return "rejected"
            return "consumed"

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                results = list(pool.map(attempt, ["newpass1", "newpass2"]))
            stored = file_store.get_by_id(user.id)
        finally:
            file_store.close()

        assert sorted(results) == ["consumed", "rejected"]
        assert stored.reset_token_hash is None and stored.reset_token_expiry is None


class TestRequestReset:
    def test_request_reset_builds_email(self, resets: ResetTokenService, store: UserStore, ann: User) -> None:
        user, notification = resets.request_reset(" ANN@x.com ")
        assert user.id == ann.id
        assert notification.template_name == "reset_password"
        assert notification.recipient == "ann@x.com"
        url = notification.variables["reset_url"]
        assert url.startswith("http://client.test/reset-password/")
        plain = url.rsplit("/", 1)[1]
        assert store.get_by_id(ann.id).reset_token_hash == hash_reset_token(plain)

    def test_unknown_email(self, resets: ResetTokenService) -> None:
        with pytest.raises(NotFoundError):
            resets.request_reset("nobody@x.com")

    def test_missing_email(self, resets: ResetTokenService) -> None:
        with pytest.raises(ValidationError):
            resets.request_reset("")

    def test_cancel_drops_pending_token(self, resets: ResetTokenService, ann: User) -> None:
        _user, notification = resets.request_reset("ann@x.com")
        plain = notification.variables["reset_url"].rsplit("/", 1)[1]
        resets.cancel(ann.id)
        with pytest.raises(ResetTokenInvalid):
            resets.consume(plain, "newpass1")
