"""
auth/tokens.py -- Signed session tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with AuthConfig.secret_key
       and carry only the user id (sub), issue time (iat) and expiry (exp).
       They are opaque to holders; nothing in them is needed client-side.

  Stateless: there is no server-side session table or revocation list. A
       valid signature plus an unexpired exp is sufficient. Changing a
       password does not invalidate tokens issued before the change -- they
       simply run out at exp. This is an accepted trade-off.

  Failures are typed: TokenExpired when the signature is good but exp has
       passed, TokenInvalid for everything else (bad signature, garbage,
       missing claims). AuthGate turns both into 401.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from auth.errors import TokenExpired, TokenInvalid
from core.config import AuthConfig

logger = logging.getLogger("progresstrack.auth.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies HS256 session tokens.

    clock is injectable so tests can mint tokens that are already expired;
    verification always checks exp against the real current time.
    """

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = _utcnow) -> None:
        self._config = config
        self._clock = clock

    def issue(self, user_id: str, expire_seconds: int = 0) -> str:
        """Encode a signed token for user_id.

        Args:
            user_id:        Opaque user id, stored as the sub claim.
            expire_seconds: Lifetime override. If 0 (default), uses
                            AuthConfig.token_expire_seconds (7 days).
        """
        duration = expire_seconds if expire_seconds > 0 else self._config.token_expire_seconds
        issued_at = self._clock()
        payload = {
            "sub": user_id,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._config.secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> str:
        """Return the user id bound to token.

        Raises TokenExpired if exp has passed, TokenInvalid for any other
        defect. No I/O happens here.
        """
        try:
            payload = jwt.decode(token, self._config.secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            logger.debug("Rejected session token: %s", exc)
            raise TokenInvalid() from exc

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id or "exp" not in payload:
            raise TokenInvalid()
        return user_id
