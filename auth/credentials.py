"""
auth/credentials.py -- Registration, login, and password lifecycle.

CredentialService orchestrates UserStore, PasswordHasher and SessionTokens.
It raises AuthError subclasses for every expected failure and lets anything
unexpected propagate to the caller's operation_boundary().

Security:
  [C1] login() always runs bcrypt, against a dummy hash when there is no real
       one, so response time does not reveal whether an email is registered.
       Unknown email, Google-only account and wrong password all produce the
       same Unauthorized message.

  forgot_password() returns the same message whether or not the email exists.

  change_password() writes through UserStore.update_password(), a
  compare-and-swap on the hash that was verified. A concurrent change that
  lands first makes ours fail with Unauthorized instead of clobbering it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import BadRequest, Conflict, NotFound, Unauthorized, UnauthorizedKind
from auth.models import FederatedCredential, LocalCredential, Role, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens

logger = logging.getLogger("coursehub.auth")

MIN_PASSWORD_LENGTH = 8

INVALID_CREDENTIALS = "Invalid email or password"
RESET_LINK_SENT = "If an account with that email exists, a password reset link has been sent."


def mask_email(email: str) -> str:
    """Return a log-safe form of an email: first character and domain only."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


class CredentialService:
    """Local-account operations: register, login, change password, forgot password.

    Usage:
        service = CredentialService(store, PasswordHasher(), SessionTokens(secret))
        user, token = service.register("Ann", "ann@example.com", "s3cret-pass")
        user, token = service.login("ann@example.com", "s3cret-pass")
    """

    def __init__(self, store: UserStore, hasher: PasswordHasher, tokens: SessionTokens) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: str | None = None,
        role: Role = Role.USER,
    ) -> tuple[User, str]:
        """Create a local account and return (user, token).

        role defaults to user. Only trusted callers may pass Role.ADMIN; the
        HTTP layer checks the caller's token before forwarding an elevation.

        Raises:
            Conflict: the email is already registered (any casing).
        """
        if self.store.get_by_email(email) is not None:
            raise Conflict("User with this email already exists")

        password_hash = self.hasher.hash(password)
        try:
            user = self.store.create_user(
                User(
                    email=email,
                    name=name.strip(),
                    phone=phone,
                    role=role,
                    credential=LocalCredential(password_hash=password_hash),
                )
            )
        except IntegrityError as exc:
            # A concurrent registration won between the check and the insert.
            raise Conflict("email already exists") from exc

        token = self.tokens.issue(user.id, user.role)
        logger.info("Registered user id=%s email=%s role=%s", user.id, mask_email(user.email), user.role.value)
        return user, token

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> tuple[User, str]:
        """Verify email and password and return (user, token).

        Raises:
            Unauthorized: for any mismatch, always with the same message.
        """
        user = self.store.get_by_email(email)
        if user is None or user.password_hash is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.burn(password)
            logger.info("Login failed email=%s", mask_email(email))
            raise Unauthorized(INVALID_CREDENTIALS, kind=UnauthorizedKind.BAD_CREDENTIALS)
        if not self.hasher.verify(password, user.password_hash):
            logger.info("Login failed email=%s", mask_email(email))
            raise Unauthorized(INVALID_CREDENTIALS, kind=UnauthorizedKind.BAD_CREDENTIALS)

        token = self.tokens.issue(user.id, user.role)
        logger.info("Login succeeded user id=%s", user.id)
        return user, token

    # ------------------------------------------------------------------
    # Change password
    # ------------------------------------------------------------------

    def change_password(self, user_id: str, old_password: str, new_password: str, confirm_password: str) -> User:
        """Replace the password of an already-authenticated user.

        Checks run in a fixed order so clients get the most actionable error
        first; the stored hash is only read after the input is known good.

        Raises:
            BadRequest:   missing field, mismatch, too short/long, unchanged,
                          or the account has no local password.
            NotFound:     the user was deleted after the token was issued.
            Unauthorized: old_password does not match, or a concurrent change won.
        """
        if not old_password or not new_password or not confirm_password:
            raise BadRequest("All fields are required")
        if new_password != confirm_password:
            raise BadRequest("New passwords do not match")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if old_password == new_password:
            raise BadRequest("New password must be different from the current password")
        PasswordHasher.check_length(new_password)

        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if isinstance(user.credential, FederatedCredential):
            raise BadRequest("Password changes are not available for accounts that sign in with Google")

        current_hash = user.credential.password_hash
        if not self.hasher.verify(old_password, current_hash):
            logger.info("Password change rejected for user id=%s: wrong current password", user_id)
            raise Unauthorized("Current password is incorrect", kind=UnauthorizedKind.WRONG_PASSWORD)

        new_hash = self.hasher.hash(new_password)
        if not self.store.update_password(user_id, new_hash, expected_hash=current_hash):
            # The row changed between our read and write: deleted or re-keyed.
            if self.store.get_by_id(user_id) is None:
                raise NotFound("User not found")
            logger.warning("Password change for user id=%s lost a concurrent update", user_id)
            raise Unauthorized("Current password is incorrect", kind=UnauthorizedKind.WRONG_PASSWORD)

        logger.info("Password changed for user id=%s", user_id)
        updated = self.store.get_by_id(user_id)
        if updated is None:
            raise NotFound("User not found")
        return updated

    # ------------------------------------------------------------------
    # Forgot password
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Accept a reset request and return the enumeration-safe message.

        Delivery of the reset link is handled outside this service; only the
        request itself is recorded here.
        """
        if not email or not email.strip():
            raise BadRequest("Email is required")
        user = self.store.get_by_email(email)
        if user is not None:
            logger.info("Password reset requested for user id=%s", user.id)
        else:
            logger.info("Password reset requested for unknown email=%s", mask_email(email))
        return RESET_LINK_SENT
