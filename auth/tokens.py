"""
auth/tokens.py -- Session token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user ID (sub), role, issued-at, and expiry. Tokens are never stored
       server-side; expiry is the only invalidation mechanism.

  Verification distinguishes two failure kinds:
       TokenExpired -- signature is valid but exp is in the past.
       TokenInvalid -- bad signature, malformed token, or missing claims.
       The guard logs the kind; both are 401 externally. No leeway is applied
       to exp.

  SECRET_KEY: sourced from core.config.get_settings() by the app factory and
       passed in. It never appears in logs or error messages.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Identity, Role

logger = logging.getLogger("coursehub.auth")

_ALGORITHM = "HS256"

_DECODE_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
    "require_sub": True,
    "leeway": 0,
}


class SessionTokens:
    """Issues and verifies signed, expiring session tokens.

    Usage:
        tokens = SessionTokens(settings.secret_key, default_ttl=settings.token_expire_seconds)
        token = tokens.issue(user.id, user.role)
        identity = tokens.verify(token)   # raises TokenExpired / TokenInvalid
    """

    def __init__(self, secret_key: str, default_ttl: timedelta | int = 7 * 24 * 3600) -> None:
        if not secret_key:
            raise ValueError("SessionTokens requires a secret key")
        self._secret_key = secret_key
        self.default_ttl = _as_timedelta(default_ttl)

    def issue(
        self,
        user_id: str,
        role: Role | str = Role.USER,
        ttl: timedelta | int | None = None,
        now: datetime | None = None,
    ) -> str:
        """Encode a signed JWT binding user_id and role, valid for ttl.

        Args:
            user_id: Opaque user ID, stored as the sub claim.
            role:    Role stored alongside so guards need no DB lookup.
            ttl:     Lifetime as timedelta or seconds. Defaults to default_ttl.
            now:     Issue time override (tests and clock injection).
        """
        issued_at = now or datetime.now(timezone.utc)
        lifetime = self.default_ttl if ttl is None else _as_timedelta(ttl)
        payload = {
            "sub": str(user_id),
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> Identity:
        """Decode and verify a JWT, returning the Identity it binds.

        Raises:
            TokenExpired: signature valid, exp in the past.
            TokenInvalid: anything else wrong with the token.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc

        try:
            role = Role(payload["role"])
        except (KeyError, ValueError) as exc:
            raise TokenInvalid() from exc
        user_id = payload.get("sub")
        if not user_id:
            raise TokenInvalid()
        return Identity(user_id=user_id, role=role)


def _as_timedelta(value: timedelta | int) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)
