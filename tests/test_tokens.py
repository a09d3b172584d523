"""Unit tests for auth/tokens.py -- HS256 session tokens.

Covers:
- issue() then verify() returns the same user id
- tokens past their lifetime raise TokenExpired
- tampered signature, foreign secret and garbage raise TokenInvalid
- tokens without a subject raise TokenInvalid
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.tokens import TokenService
from core.config import AuthConfig


def test_round_trip(tokens: TokenService) -> None:
    token = tokens.issue("user-123")
    assert tokens.verify(token) == "user-123"


def test_default_lifetime_is_seven_days(tokens: TokenService, auth_config: AuthConfig) -> None:
    token = tokens.issue("user-123")
    claims = jwt.get_unverified_claims(token)
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600
    assert auth_config.token_expire_seconds == 7 * 24 * 3600


def test_lifetime_override(tokens: TokenService) -> None:
    claims = jwt.get_unverified_claims(tokens.issue("user-123", expire_seconds=60))
    assert claims["exp"] - claims["iat"] == 60


def test_expired_token(auth_config: AuthConfig) -> None:
    """A token minted eight days ago has outlived the seven-day default."""
    eight_days_ago = datetime.now(timezone.utc) - timedelta(days=8)
    stale = TokenService(auth_config, clock=lambda: eight_days_ago).issue("user-123")
    with pytest.raises(TokenExpired):
        TokenService(auth_config).verify(stale)


def test_tampered_signature(tokens: TokenService) -> None:
    token = tokens.issue("user-123")
    header, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
    with pytest.raises(TokenInvalid):
        tokens.verify(f"{header}.{payload}.{flipped}")


def test_tampered_payload(tokens: TokenService, auth_config: AuthConfig) -> None:
    token = tokens.issue("user-123")
    forged = jwt.encode({"sub": "admin", "exp": 9999999999}, "x" * 40, algorithm="HS256")
    header, _payload, signature = token.split(".")
    with pytest.raises(TokenInvalid):
        tokens.verify(f"{header}.{forged.split('.')[1]}.{signature}")


def test_token_from_other_secret(tokens: TokenService) -> None:
    other = TokenService(AuthConfig(secret_key="another-secret-that-is-long-enough-9876543210"))
    with pytest.raises(TokenInvalid):
        tokens.verify(other.issue("user-123"))


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c", "Bearer abc"])
def test_malformed(tokens: TokenService, garbage: str) -> None:
    with pytest.raises(TokenInvalid):
        tokens.verify(garbage)


def test_missing_subject(tokens: TokenService, auth_config: AuthConfig) -> None:
    exp = datetime.now(timezone.utc) + timedelta(hours=1)
    token = jwt.encode({"exp": exp}, auth_config.secret_key, algorithm="HS256")
    with pytest.raises(TokenInvalid):
        tokens.verify(token)


def test_expired_and_invalid_are_distinguishable() -> None:
    assert TokenExpired().message != TokenInvalid().message
    assert TokenExpired.status_code == TokenInvalid.status_code == 401
