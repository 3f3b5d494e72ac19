"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt only looks at the first 72 bytes of its input. check_length() rejects
longer passwords up front so two different passwords can never share a hash.

The cost factor defaults to 12 (Settings.bcrypt_rounds). Tests lower it via
BCRYPT_ROUNDS to keep the suite fast; production code never should.
"""

from __future__ import annotations

import bcrypt

from auth.errors import BadRequest

MAX_PASSWORD_BYTES = 72
DEFAULT_ROUNDS = 12


class PasswordHasher:
    """Salted one-way hashing and verification of passwords.

    Usage:
        hasher = PasswordHasher()
        digest = hasher.hash("correct horse")
        hasher.verify("correct horse", digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises BadRequest for passwords over 72 bytes. Any other failure
        propagates to the caller's operation_boundary.
        """
        self.check_length(plain)
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A wrong password is an ordinary False, never an exception. Malformed
        or missing hashes are also False.
        """
        if not plain or not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Run one verification against a throwaway hash [C1].

        Called when there is no real hash to check (unknown email, Google-only
        account) so the response takes as long as a real password check and
        timing does not reveal whether the account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("coursehub_timing_dummy")
        self.verify(plain or "x", self._dummy_hash)

    @staticmethod
    def check_length(plain: str) -> None:
        if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise BadRequest(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
