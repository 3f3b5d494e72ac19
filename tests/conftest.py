"""
tests/conftest.py -- Shared test fixtures for Coursehub auth tests.

This module provides:
  - make_store(): isolated named shared-memory SQLite UserStore
  - store / hasher / tokens / service: unit-level collaborators
  - google_key / id_token_factory: a locally generated RSA key standing in
    for Google's signing key, plus a helper that mints ID tokens with it
  - client: TestClient over the real app with a patched lifespan, a fresh
    store and a fresh AttemptLimiter for every test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any api/ or core/ import:
  DEBUG=true          -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4     -- keeps hashing fast; production default is 12
  ALLOWED_HOSTS       -- TrustedHostMiddleware must accept "testserver"
  GOOGLE_CLIENT_ID    -- audience expected in test ID tokens
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

TEST_GOOGLE_CLIENT_ID = "coursehub-test.apps.googleusercontent.com"

# CRITICAL: Set before any core/api import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("GOOGLE_CLIENT_ID", TEST_GOOGLE_CLIENT_ID)

import pytest
from authlib.jose import JsonWebKey, JsonWebToken
from fastapi.testclient import TestClient

from api.main import app, build_auth_state
from auth.credentials import CredentialService
from auth.oauth import GoogleIdTokenVerifier
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
GOOGLE_KID = "coursehub-test-key"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    The random suffix keeps every store independent, so tests never see
    each other's users.
    """
    name = f"test_auth_{uuid.uuid4().hex}"
    return UserStore(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def tokens() -> SessionTokens:
    return SessionTokens(TEST_SECRET, default_ttl=3600)


@pytest.fixture
def service(store: UserStore, hasher: PasswordHasher, tokens: SessionTokens) -> CredentialService:
    return CredentialService(store, hasher, tokens)


# ---------------------------------------------------------------------------
# Google signing key stand-in
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def google_key():
    """RSA private key playing the role of Google's current signing key."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": GOOGLE_KID})


@pytest.fixture(scope="session")
def google_jwks(google_key) -> dict:
    """The public JWKS document a verifier would download from Google."""
    return {"keys": [google_key.as_dict(is_private=False)]}


@pytest.fixture(scope="session")
def id_token_factory(google_key) -> Callable[..., str]:
    """Return a function that mints signed Google-style ID tokens.

    Keyword overrides replace default claims; passing a claim as None drops it.
    """
    signer = JsonWebToken(["RS256"])

    def _make(key=None, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": TEST_GOOGLE_CLIENT_ID,
            "sub": "google-sub-123",
            "email": "learner@example.com",
            "email_verified": True,
            "name": "Learner One",
            "picture": "https://example.com/learner.png",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        token = signer.encode({"alg": "RS256", "kid": GOOGLE_KID}, claims, key if key is not None else google_key)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    return _make


@pytest.fixture
def google_verifier(google_jwks) -> GoogleIdTokenVerifier:
    return GoogleIdTokenVerifier(client_id=TEST_GOOGLE_CLIENT_ID, jwks_loader=lambda: google_jwks)


# ---------------------------------------------------------------------------
# Application client
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, google_jwks: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state through the same build_auth_state()
    the real lifespan uses, then points the Google verifier at the local key.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_auth_state(app, get_settings(), user_store)
        app.state.federation.verifier = GoogleIdTokenVerifier(
            client_id=TEST_GOOGLE_CLIENT_ID,
            jwks_loader=lambda: google_jwks,
        )
        yield

    return test_lifespan


@pytest.fixture
def client(google_jwks) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with an isolated store and limiter."""
    user_store = make_store()
    app.router.lifespan_context = _patch_lifespan(user_store, google_jwks)

    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client

    user_store.close()
