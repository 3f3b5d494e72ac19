"""Unit tests for auth/oauth.py -- Google ID token verification and federation.

Google's signing key is replaced by a locally generated RSA key (conftest
google_key); the verifier gets the matching public JWKS through its
jwks_loader hook, so no test touches the network.

Covers:
- a valid ID token yields the profile it carries
- wrong audience, wrong issuer, expired, foreign-signed, and unverified-email
  tokens are all Unauthorized("Invalid token")
- unknown kid triggers one JWKS refetch, throttled across requests
- JWKS download failure and missing client ID are InternalError
- federation creates one google user per email, reuses it afterwards,
  and never gives it a password hash
- missing email / missing subject / no grant are BadRequest
- client-supplied claims can be switched off
"""

import time

import pytest
import requests
from authlib.jose import JsonWebKey, JsonWebToken
from jose import jwt

from auth.errors import BadRequest, InternalError, Unauthorized
from auth.models import ClaimGrant, IdTokenGrant, LocalCredential, Provider, Role, User
from auth.oauth import GoogleIdTokenVerifier, JwksCache, OAuthFederation

from conftest import GOOGLE_KID, TEST_GOOGLE_CLIENT_ID

CLAIMS = {"email": "learner@example.com", "sub": "google-sub-123", "name": "Learner One", "picture": "p.png"}


@pytest.fixture
def federation(store, tokens, google_verifier):
    return OAuthFederation(store, tokens, google_verifier, token_ttl=1800)


# ---------------------------------------------------------------------------
# ID token verification
# ---------------------------------------------------------------------------


class TestVerifier:
    def test_valid_token(self, google_verifier, id_token_factory):
        profile = google_verifier.verify(id_token_factory())
        assert profile.email == "learner@example.com"
        assert profile.subject == "google-sub-123"
        assert profile.name == "Learner One"
        assert profile.picture == "https://example.com/learner.png"

    def test_short_issuer_form_is_accepted(self, google_verifier, id_token_factory):
        profile = google_verifier.verify(id_token_factory(iss="accounts.google.com"))
        assert profile.subject == "google-sub-123"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "someone-else.apps.googleusercontent.com"},
            {"iss": "https://evil.example.com"},
            {"email_verified": False},
            {"sub": None},
        ],
        ids=["audience", "issuer", "unverified-email", "no-subject"],
    )
    def test_rejected_claims(self, google_verifier, id_token_factory, overrides):
        with pytest.raises(Unauthorized) as exc_info:
            google_verifier.verify(id_token_factory(**overrides))
        assert exc_info.value.message == "Invalid token"

    def test_expired_token(self, google_verifier, id_token_factory):
        past = int(time.time()) - 7200
        with pytest.raises(Unauthorized):
            google_verifier.verify(id_token_factory(iat=past, exp=past + 3600))

    def test_token_signed_by_another_key(self, google_verifier, id_token_factory):
        impostor = JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": GOOGLE_KID})
        with pytest.raises(Unauthorized):
            google_verifier.verify(id_token_factory(key=impostor))

    def test_hs256_token_is_rejected(self, google_verifier):
        forged = jwt.encode(
            {"iss": "https://accounts.google.com", "aud": TEST_GOOGLE_CLIENT_ID, "sub": "x", "exp": 9999999999},
            "shared-secret",
            algorithm="HS256",
        )
        with pytest.raises(Unauthorized):
            google_verifier.verify(forged)

    def test_garbage_token(self, google_verifier):
        with pytest.raises(Unauthorized):
            google_verifier.verify("not.a.token")

    def test_missing_client_id_is_configuration_error(self, google_jwks, id_token_factory):
        verifier = GoogleIdTokenVerifier(client_id="", jwks_loader=lambda: google_jwks)
        with pytest.raises(InternalError):
            verifier.verify(id_token_factory())

    def test_jwks_download_failure(self, id_token_factory):
        def offline():
            raise requests.ConnectionError("no route to host")

        verifier = GoogleIdTokenVerifier(client_id=TEST_GOOGLE_CLIENT_ID, jwks_loader=offline)
        with pytest.raises(InternalError) as exc_info:
            verifier.verify(id_token_factory())
        assert "no route to host" in exc_info.value.detail


class TestJwksCache:
    def test_keys_are_cached(self, google_jwks):
        calls = []

        def loader():
            calls.append(1)
            return google_jwks

        cache = JwksCache(loader, ttl=3600)
        cache.get()
        cache.get()
        assert len(calls) == 1

    def test_unknown_kid_refetches_once(self, google_jwks, id_token_factory):
        """Google rotated keys: the first document lacks the kid, the refetch has it."""
        documents = [{"keys": []}, google_jwks]
        calls = []

        def loader():
            calls.append(1)
            return documents[min(len(calls) - 1, 1)]

        verifier = GoogleIdTokenVerifier(client_id=TEST_GOOGLE_CLIENT_ID, jwks_loader=loader)
        assert verifier.verify(id_token_factory()).subject == "google-sub-123"
        assert len(calls) == 2

    def test_made_up_kids_do_not_refetch_every_request(self, google_key, google_jwks, id_token_factory):
        """Forced refreshes are throttled: a burst of unknown kids costs one extra download."""
        calls = []

        def loader():
            calls.append(1)
            return google_jwks

        verifier = GoogleIdTokenVerifier(client_id=TEST_GOOGLE_CLIENT_ID, jwks_loader=loader)
        signer = JsonWebToken(["RS256"])
        claims = {
            "iss": "https://accounts.google.com",
            "aud": TEST_GOOGLE_CLIENT_ID,
            "sub": "google-sub-123",
            "iat": int(time.time()),
            "exp": int(time.time()) + 3600,
        }
        for i in range(10):
            token = signer.encode({"alg": "RS256", "kid": f"unknown-{i}"}, claims, google_key)
            with pytest.raises(Unauthorized):
                verifier.verify(token.decode("utf-8") if isinstance(token, bytes) else token)
        assert len(calls) == 2

        # Known keys keep working from the cache.
        assert verifier.verify(id_token_factory()).subject == "google-sub-123"
        assert len(calls) == 2

    def test_forced_refresh_allowed_again_after_interval(self, google_jwks):
        calls = []

        def loader():
            calls.append(1)
            return google_jwks

        throttled = JwksCache(loader, ttl=3600, min_refresh=60)
        throttled.get()
        throttled.get(force=True)
        throttled.get(force=True)
        assert len(calls) == 2

        calls.clear()
        unthrottled = JwksCache(loader, ttl=3600, min_refresh=0)
        unthrottled.get()
        unthrottled.get(force=True)
        unthrottled.get(force=True)
        assert len(calls) == 3


# ---------------------------------------------------------------------------
# Federation
# ---------------------------------------------------------------------------


class TestFederation:
    def test_claim_grant_creates_google_user(self, federation, store, tokens):
        user, token = federation.login(ClaimGrant(claims=dict(CLAIMS)))
        assert user.provider is Provider.GOOGLE
        assert user.google_id == "google-sub-123"
        assert user.password_hash is None
        assert user.role is Role.USER
        assert user.picture == "p.png"
        assert tokens.verify(token).user_id == user.id
        assert store.count_users() == 1

    def test_repeat_login_reuses_user(self, federation, store):
        first, _ = federation.login(ClaimGrant(claims=dict(CLAIMS)))
        second, _ = federation.login(ClaimGrant(claims=dict(CLAIMS, email="LEARNER@example.com")))
        assert first.id == second.id
        assert store.count_users() == 1

    def test_id_token_grant(self, federation, id_token_factory):
        user, _ = federation.login(IdTokenGrant(id_token=id_token_factory()))
        assert user.email == "learner@example.com"
        assert user.provider is Provider.GOOGLE

    def test_existing_local_user_is_reused_as_is(self, federation, store):
        local = store.create_user(
            User(email="learner@example.com", name="Local", credential=LocalCredential(password_hash="$2b$04$h"))
        )
        user, _ = federation.login(ClaimGrant(claims=dict(CLAIMS)))
        assert user.id == local.id
        assert user.provider is Provider.LOCAL
        assert user.name == "Local"

    def test_name_falls_back_to_email_local_part(self, federation):
        user, _ = federation.login(ClaimGrant(claims={"email": "quiet@example.com", "sub": "s-2"}))
        assert user.name == "quiet"

    def test_non_string_claims_are_ignored(self, federation):
        user, _ = federation.login(
            ClaimGrant(claims={"email": "a@b.com", "sub": "s-3", "name": 123, "picture": ["x"]})
        )
        assert user.name == "a"
        assert user.picture is None

    def test_token_uses_federation_ttl(self, federation):
        _, token = federation.login(ClaimGrant(claims=dict(CLAIMS)))
        claims = jwt.get_unverified_claims(token)
        assert claims["exp"] - claims["iat"] == 1800

    def test_missing_email(self, federation, store):
        with pytest.raises(BadRequest) as exc_info:
            federation.login(ClaimGrant(claims={"sub": "s-1", "name": "No Mail"}))
        assert exc_info.value.message == "Email not provided"
        assert store.count_users() == 0

    def test_missing_subject(self, federation, store):
        with pytest.raises(BadRequest):
            federation.login(ClaimGrant(claims={"email": "x@example.com"}))
        assert store.count_users() == 0

    def test_no_grant(self, federation):
        with pytest.raises(BadRequest) as exc_info:
            federation.login(None)
        assert exc_info.value.message == "Token or userInfo is required"

    def test_client_claims_can_be_disabled(self, store, tokens, google_verifier):
        strict = OAuthFederation(store, tokens, google_verifier, accept_client_claims=False)
        with pytest.raises(Unauthorized):
            strict.login(ClaimGrant(claims=dict(CLAIMS)))
        assert store.count_users() == 0

    def test_creation_race_reads_winner(self, federation, store, monkeypatch):
        """A concurrent request created the email between lookup and insert."""
        winner = store.create_user(
            User(email="learner@example.com", name="Winner", credential=LocalCredential(password_hash="$2b$04$h"))
        )
        real_get = store.get_by_email
        lookups = []

        def first_miss(email):
            lookups.append(email)
            return None if len(lookups) == 1 else real_get(email)

        monkeypatch.setattr(store, "get_by_email", first_miss)
        user, _ = federation.login(ClaimGrant(claims=dict(CLAIMS)))
        assert user.id == winner.id
