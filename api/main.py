"""
api/main.py -- FastAPI application entry point for Coursehub authentication.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins

Rate limiting is not middleware: the public credential routes declare
Depends(auth_rate_limit), which consults app.state.auth_limiter.

Lifespan builds every auth collaborator once and hangs it on app.state:
  user_store, tokens, credentials, federation, auth_limiter.
Route handlers and the auth guard read them from request.app.state, which is
what lets tests swap in isolated instances.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.credentials import CredentialService
from auth.errors import AuthError, RateLimited
from auth.oauth import GoogleIdTokenVerifier, OAuthFederation
from auth.passwords import PasswordHasher
from auth.rate_limiter import AttemptLimiter
from auth.store import UserStore
from auth.tokens import SessionTokens
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("coursehub.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_auth_state(app: FastAPI, settings: Settings, user_store: UserStore) -> None:
    """Construct the auth collaborators around user_store and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same graph.
    """
    tokens = SessionTokens(settings.secret_key, default_ttl=settings.token_expire_seconds)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    verifier = GoogleIdTokenVerifier(
        client_id=settings.google_client_id,
        jwks_url=settings.google_jwks_url,
        cache_seconds=settings.google_jwks_cache_seconds,
        min_refresh_seconds=settings.google_jwks_min_refresh_seconds,
    )
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.tokens = tokens
    app.state.credentials = CredentialService(user_store, hasher, tokens)
    app.state.federation = OAuthFederation(
        user_store,
        tokens,
        verifier,
        accept_client_claims=settings.google_accept_client_claims,
        token_ttl=settings.google_token_expire_seconds,
    )
    app.state.auth_limiter = AttemptLimiter(
        attempts=settings.auth_rate_limit_attempts,
        window_seconds=settings.auth_rate_limit_window_seconds,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the user store on startup and close it on shutdown."""
    logger.info("Coursehub auth API starting up (environment=%s)", _settings.environment)
    build_auth_state(app, _settings, UserStore(_settings.database_url))
    if not _settings.google_client_id:
        logger.warning("GOOGLE_CLIENT_ID is not set -- Google ID token sign-in is disabled")
    logger.info(
        "Auth initialized (rate limit %d attempts / %ds)",
        _settings.auth_rate_limit_attempts,
        _settings.auth_rate_limit_window_seconds,
    )

    yield

    app.state.user_store.close()
    logger.info("Coursehub auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Coursehub Auth API",
    description="Registration, login, password lifecycle and Google sign-in for Coursehub.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; latency is measured around call_next. Headers and bodies are never
# logged -- they carry passwords and tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, message: str, code: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=ErrorDetail(code=code, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError into the failure envelope.

    detail (raw internal error text) is only echoed when ENVIRONMENT=development.
    """
    detail = exc.detail if request.app.state.settings.expose_error_detail else None
    response = _error_response(exc.status_code, exc.message, exc.code, detail)
    if isinstance(exc, RateLimited):
        # Retry-After tells clients exactly how many seconds to wait.
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the request body fails validation.

    Only field locations and messages are echoed; pydantic's "input" entry would
    send submitted passwords back in the response.
    """
    problems = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}" for err in exc.errors()
    ]
    return _error_response(400, "Request validation failed", "validation_error", "; ".join(problems))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405 method)."""
    return _error_response(exc.status_code, str(exc.detail), f"http_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the server log only, unless
    ENVIRONMENT=development. Stack traces in responses aid attackers.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = str(exc) if request.app.state.settings.expose_error_detail else None
    return _error_response(500, "Internal server error", "internal_error", detail)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    return HealthResponse(version=VERSION, components=components)
