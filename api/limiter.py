"""
api/limiter.py -- Rate-limit dependency for the public credential endpoints.

The AttemptLimiter itself lives on app.state.auth_limiter (built in lifespan,
rebuilt per test). Every route that declares Depends(auth_rate_limit) shares
that one instance and the "auth" scope, so register, login and
forgot-password draw on a single budget per client address.
"""

from fastapi import Request

from auth.rate_limiter import AttemptLimiter


def client_key(request: Request) -> str:
    """Remote address of the caller, or "unknown" when the transport has none."""
    return request.client.host if request.client else "unknown"


def auth_rate_limit(request: Request) -> None:
    """Count one attempt against the caller's auth budget. Raises RateLimited (429)."""
    limiter: AttemptLimiter = request.app.state.auth_limiter
    limiter.hit(client_key(request), scope="auth")
