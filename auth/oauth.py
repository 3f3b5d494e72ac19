"""
auth/oauth.py -- Google sign-in: ID token verification and account federation.

Two inputs are accepted, modelled as an explicit two-variant grant:
  IdTokenGrant -- a Google ID token. Verified here with authlib's JOSE
                  implementation against Google's published JWKS: RS256
                  signature, issuer, audience (our client ID) and expiry.
  ClaimGrant   -- a profile the frontend already obtained from Google. Trusted
                  as-is; GOOGLE_ACCEPT_CLIENT_CLAIMS=false turns this path off.

Security notes:
  [H1] A verified ID token that carries an email must also carry
       email_verified=true. An unverified address could belong to someone
       else, and we match accounts by email.

  The JWKS document is cached for GOOGLE_JWKS_CACHE_SECONDS and refetched
  once when a token names a key ID we have not seen (Google rotates keys).

Federation is lookup-or-create by email. An existing record is reused as-is,
whatever its provider, and no profile fields are synced. The token issued
afterwards has the same shape as a password-login token.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import timedelta

import requests
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError
from sqlalchemy.exc import IntegrityError

from auth.credentials import mask_email
from auth.errors import BadRequest, InternalError, Unauthorized, UnauthorizedKind
from auth.models import (
    ClaimGrant,
    FederatedCredential,
    FederationGrant,
    GoogleProfile,
    IdTokenGrant,
    Provider,
    User,
)
from auth.store import UserStore
from auth.tokens import SessionTokens

logger = logging.getLogger("coursehub.auth.oauth")

GOOGLE_ISSUERS = ["https://accounts.google.com", "accounts.google.com"]
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"

# Module-level session shared across JWKS fetches for connection pooling.
# max_redirects=3 -- a known public endpoint needs no long redirect chains.
_session = requests.Session()
_session.max_redirects = 3


def fetch_jwks(url: str = GOOGLE_JWKS_URL) -> dict:
    """Download a JWKS document. Raises requests.RequestException on failure."""
    resp = _session.get(url, timeout=10)
    resp.raise_for_status()
    return resp.json()


class JwksCache:
    """Caches a JWKS document for ttl seconds.

    loader is any zero-argument callable returning the JWKS dict; tests pass a
    lambda over a locally generated key set instead of hitting Google.

    Forced refreshes (unknown kid) happen at most once per min_refresh
    seconds. Between them, get(force=True) returns the cached set, so tokens
    naming made-up key IDs cannot drive a download per request.
    """

    def __init__(self, loader: Callable[[], dict], ttl: int = 3600, min_refresh: int = 60) -> None:
        self._loader = loader
        self.ttl = ttl
        self.min_refresh = min_refresh
        self._lock = threading.Lock()
        self._keys = None
        self._fetched_at = 0.0
        self._forced_at: float | None = None

    def get(self, force: bool = False):
        with self._lock:
            now = time.monotonic()
            stale = now - self._fetched_at > self.ttl
            if force and self._keys is not None and not stale:
                if self._forced_at is not None and now - self._forced_at < self.min_refresh:
                    return self._keys
                self._forced_at = now
            if force or self._keys is None or stale:
                self._keys = JsonWebKey.import_key_set(self._loader())
                self._fetched_at = time.monotonic()
                logger.info("Google signing keys loaded")
            return self._keys


class GoogleIdTokenVerifier:
    """Verifies Google ID tokens and returns the profile they carry.

    Usage:
        verifier = GoogleIdTokenVerifier(client_id="123.apps.googleusercontent.com")
        profile = verifier.verify(id_token)   # raises Unauthorized
    """

    def __init__(
        self,
        client_id: str,
        jwks_url: str = GOOGLE_JWKS_URL,
        cache_seconds: int = 3600,
        min_refresh_seconds: int = 60,
        jwks_loader: Callable[[], dict] | None = None,
    ) -> None:
        self.client_id = client_id
        self._jwt = JsonWebToken(["RS256"])
        self._keys = JwksCache(
            jwks_loader or (lambda: fetch_jwks(jwks_url)),
            ttl=cache_seconds,
            min_refresh=min_refresh_seconds,
        )

    def verify(self, id_token: str) -> GoogleProfile:
        if not self.client_id:
            logger.error("Google ID token received but GOOGLE_CLIENT_ID is not configured")
            raise InternalError("Google sign-in is not configured")
        try:
            try:
                claims = self._decode(id_token, self._keys.get())
            except ValueError:
                # Unknown key ID -- Google may have rotated its keys since the last fetch.
                claims = self._decode(id_token, self._keys.get(force=True))
        except (JoseError, ValueError) as exc:
            logger.warning("Google token verification failed: %s", type(exc).__name__)
            raise Unauthorized("Invalid token", kind=UnauthorizedKind.INVALID) from exc
        except requests.RequestException as exc:
            logger.error("Could not fetch Google signing keys: %s", exc)
            raise InternalError("Could not verify the Google token", detail=str(exc)) from exc

        if claims.get("email") and claims.get("email_verified") not in (True, "true"):
            logger.warning("Google token rejected: email is not verified")  # [H1]
            raise Unauthorized("Invalid token", kind=UnauthorizedKind.INVALID)
        return GoogleProfile.from_claims(dict(claims))

    def _decode(self, id_token: str, keys):
        claims = self._jwt.decode(
            id_token,
            keys,
            claims_options={
                "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                "aud": {"essential": True, "value": self.client_id},
                "sub": {"essential": True},
                "exp": {"essential": True},
            },
        )
        claims.validate(leeway=0)
        return claims


class OAuthFederation:
    """Maps a Google identity onto a local user record and issues a session token.

    Usage:
        federation = OAuthFederation(store, tokens, verifier)
        user, token = federation.login(IdTokenGrant(id_token))
    """

    def __init__(
        self,
        store: UserStore,
        tokens: SessionTokens,
        verifier: GoogleIdTokenVerifier,
        accept_client_claims: bool = True,
        token_ttl: timedelta | int = timedelta(days=7),
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.verifier = verifier
        self.accept_client_claims = accept_client_claims
        self.token_ttl = token_ttl

    def login(self, grant: FederationGrant | None) -> tuple[User, str]:
        """Resolve the grant to a user (creating one if needed) and return (user, token).

        Raises:
            BadRequest:   no grant, or the profile lacks an email or subject.
            Unauthorized: the ID token failed verification, or client claims are disabled.
        """
        profile = self._resolve_profile(grant)
        if not profile.email:
            raise BadRequest("Email not provided")
        if not profile.subject:
            raise BadRequest("Google account ID not provided")

        user = self.store.get_by_email(profile.email)
        if user is None:
            user = self._create(profile)
        else:
            logger.info("Google login for existing user id=%s", user.id)

        token = self.tokens.issue(user.id, user.role, ttl=self.token_ttl)
        return user, token

    def _resolve_profile(self, grant: FederationGrant | None) -> GoogleProfile:
        if isinstance(grant, IdTokenGrant):
            return self.verifier.verify(grant.id_token)
        if isinstance(grant, ClaimGrant):
            if not self.accept_client_claims:
                logger.warning("Rejected client-supplied Google profile: GOOGLE_ACCEPT_CLIENT_CLAIMS is off")
                raise Unauthorized("Invalid token", kind=UnauthorizedKind.INVALID)
            return GoogleProfile.from_claims(grant.claims)
        raise BadRequest("Token or userInfo is required")

    def _create(self, profile: GoogleProfile) -> User:
        new_user = User(
            email=profile.email,
            name=(profile.name or profile.email.partition("@")[0]).strip()[:100],
            picture=profile.picture,
            credential=FederatedCredential(provider=Provider.GOOGLE, external_id=profile.subject),
        )
        try:
            user = self.store.create_user(new_user)
        except IntegrityError:
            # A concurrent request created the same email first; reuse it.
            existing = self.store.get_by_email(profile.email)
            if existing is None:
                raise
            return existing
        logger.info("Created Google user id=%s email=%s", user.id, mask_email(user.email))
        return user
