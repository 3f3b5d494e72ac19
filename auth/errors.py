"""
auth/errors.py -- Error taxonomy for the authentication core.

Every expected failure is an AuthError subclass carrying its HTTP status and a
machine-readable code. Services raise them; api/main.py renders them into the
standard failure envelope with a single exception handler. Nothing in auth/
imports FastAPI's HTTPException, so the services stay usable outside a
request.

operation_boundary() is the catch point for everything else: unexpected
persistence or crypto failures are logged with full traceback server-side and
re-raised as InternalError. The raw text travels in InternalError.detail and
is only shown to clients when Settings.expose_error_detail is on.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

logger = logging.getLogger("coursehub.auth")


class AuthError(Exception):
    """Base class for failures that map onto a structured HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class BadRequest(AuthError):
    """Malformed or missing input, or a business-rule violation on input."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class UnauthorizedKind(str, Enum):
    BAD_CREDENTIALS = "bad_credentials"
    MISSING = "token_missing"
    INVALID = "token_invalid"
    EXPIRED = "token_expired"
    WRONG_PASSWORD = "wrong_password"


class Unauthorized(AuthError):
    """Bad credentials or a missing/invalid/expired token.

    kind is for observability: every kind maps to 401 externally.
    """

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"
    kind: UnauthorizedKind = UnauthorizedKind.BAD_CREDENTIALS

    def __init__(
        self,
        message: str | None = None,
        *,
        kind: UnauthorizedKind | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        if kind is not None:
            self.kind = kind


class TokenMissing(Unauthorized):
    code = "token_missing"
    default_message = "Access token required"
    kind = UnauthorizedKind.MISSING


class TokenInvalid(Unauthorized):
    code = "token_invalid"
    default_message = "Invalid token"
    kind = UnauthorizedKind.INVALID


class TokenExpired(Unauthorized):
    code = "token_expired"
    default_message = "Token has expired"
    kind = UnauthorizedKind.EXPIRED


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Admin access required"


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many authentication attempts, please try again later"

    def __init__(self, message: str | None = None, *, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InternalError(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"


@contextmanager
def operation_boundary(message: str) -> Iterator[None]:
    """Translate unexpected exceptions raised inside the block into InternalError.

    AuthError subclasses pass through untouched. Anything else is logged with
    its traceback and replaced by InternalError(message, detail=str(exc)).

    Usage:
        with operation_boundary("Registration failed"):
            user, token = service.register(...)
    """
    try:
        yield
    except AuthError:
        raise
    except Exception as exc:
        logger.exception("%s: %s", message, type(exc).__name__)
        raise InternalError(message, detail=str(exc)) from exc
