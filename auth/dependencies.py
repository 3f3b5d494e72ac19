"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication (the auth guard).

The guard reads "Authorization: Bearer <token>", verifies it with the
SessionTokens instance on app.state, and attaches the resulting Identity to
request.state.identity for downstream handlers.

Failures are Unauthorized subclasses with a distinct kind:
  TokenMissing  -- no Authorization header, or not a Bearer credential.
  TokenInvalid  -- bad signature, malformed token, missing claims.
  TokenExpired  -- correctly signed but past exp.
The kind is logged and returned as the error code; the status is always 401.

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() raises on failure.
require_admin() wraps get_current_identity() and raises 403 if not admin.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import Forbidden, TokenMissing, Unauthorized
from auth.models import Identity
from auth.tokens import SessionTokens

logger = logging.getLogger("coursehub.auth.guard")


def _extract_bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token. Raises TokenMissing / TokenInvalid / TokenExpired.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _extract_bearer(request)
    if token is None:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, TokenMissing.kind.value)
        raise TokenMissing()

    tokens: SessionTokens = request.app.state.tokens
    try:
        identity = tokens.verify(token)
    except Unauthorized as exc:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.kind.value)
        raise

    request.state.identity = identity
    return identity


def try_get_identity(request: Request) -> Identity | None:
    """Return the Identity for a valid bearer token, or None. Never raises."""
    if _extract_bearer(request) is None:
        return None
    try:
        return get_current_identity(request)
    except Unauthorized:
        return None


def require_admin(request: Request) -> Identity:
    """Require an admin token. Raises 401 if unauthenticated, 403 if not admin."""
    identity = get_current_identity(request)
    if not identity.is_admin:
        raise Forbidden()
    return identity
