"""Unit tests for core/config.py -- Settings validation.

Covers:
- production mode refuses to start without SECRET_KEY
- debug mode generates a SECRET_KEY
- short keys are rejected in every mode
- error detail is exposed only in development
- auth defaults (7-day tokens, 5 attempts / 15 minutes, bcrypt cost 12,
  one forced JWKS refetch per minute)
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

STRONG_KEY = "k" * 32


def test_production_requires_secret_key():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=False, secret_key="")


def test_debug_generates_secret_key():
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


@pytest.mark.parametrize("debug", [True, False])
def test_short_secret_key_rejected(debug):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=debug, secret_key="too-short")


@pytest.mark.parametrize(
    "environment, exposed",
    [("development", True), ("Development ", True), ("production", False), ("staging", False)],
)
def test_expose_error_detail(environment, exposed):
    settings = Settings(_env_file=None, secret_key=STRONG_KEY, environment=environment)
    assert settings.expose_error_detail is exposed


def test_auth_defaults():
    settings = Settings(_env_file=None, secret_key=STRONG_KEY, bcrypt_rounds=12)
    assert settings.token_expire_seconds == 7 * 24 * 3600
    assert settings.auth_rate_limit_attempts == 5
    assert settings.auth_rate_limit_window_seconds == 900
    assert settings.bcrypt_rounds == 12
    assert settings.google_jwks_min_refresh_seconds == 60


@pytest.mark.parametrize("rounds", [3, 32])
def test_bcrypt_rounds_bounds(rounds):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, secret_key=STRONG_KEY, bcrypt_rounds=rounds)
