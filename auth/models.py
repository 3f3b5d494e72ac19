"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Dataclasses own
domain shape; stores, services, and routes do the work.

Credentials are a tagged union rather than a set of optional columns:
  LocalCredential     -- email/password account; always carries a bcrypt hash.
  FederatedCredential -- Google sign-in account; carries the provider's stable
                         subject ID and never a password hash.
"Has a password" is therefore a type-level fact: isinstance(c, LocalCredential).

Federation input is the same shape of problem: IdTokenGrant (verify a token)
or ClaimGrant (trust an already-verified profile). Exactly one is built per
request, at the HTTP boundary.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Provider(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"


@dataclass(frozen=True)
class LocalCredential:
    """Password credential for a local account. password_hash is never empty."""

    password_hash: str

    def __post_init__(self) -> None:
        if not self.password_hash:
            raise ValueError("LocalCredential requires a non-empty password hash")

    @property
    def provider(self) -> Provider:
        return Provider.LOCAL


@dataclass(frozen=True)
class FederatedCredential:
    """Identity delegated to a third-party provider (Google)."""

    provider: Provider
    external_id: str  # provider's stable subject ID ("sub" claim)

    def __post_init__(self) -> None:
        if self.provider is Provider.LOCAL:
            raise ValueError("FederatedCredential cannot use the local provider")
        if not self.external_id:
            raise ValueError("FederatedCredential requires an external subject ID")


Credential = Union[LocalCredential, FederatedCredential]


@dataclass
class User:
    """A Coursehub account.

    email is stored normalized (lowercase, stripped) so uniqueness is
    case-insensitive. id, created_at and updated_at are assigned by UserStore.
    """

    email: str
    name: str
    credential: Credential
    role: Role = Role.USER
    phone: str | None = None
    picture: str | None = None
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def provider(self) -> Provider:
        return self.credential.provider

    @property
    def password_hash(self) -> str | None:
        if isinstance(self.credential, LocalCredential):
            return self.credential.password_hash
        return None

    @property
    def google_id(self) -> str | None:
        if isinstance(self.credential, FederatedCredential) and self.credential.provider is Provider.GOOGLE:
            return self.credential.external_id
        return None


@dataclass(frozen=True)
class Identity:
    """The verified subject of a session token, attached to request.state by the guard."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


# ---------------------------------------------------------------------------
# Federation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoogleProfile:
    """Normalized profile extracted from a Google ID token or a trusted claim."""

    email: str | None
    subject: str | None
    name: str | None = None
    picture: str | None = None

    @classmethod
    def from_claims(cls, claims: dict) -> GoogleProfile:
        """Build a profile from raw claims. Non-string or blank values count as absent."""
        return cls(
            email=_text_claim(claims, "email"),
            subject=_text_claim(claims, "sub"),
            name=_text_claim(claims, "name"),
            picture=_text_claim(claims, "picture"),
        )


def _text_claim(claims: dict, key: str) -> str | None:
    value = claims.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


@dataclass(frozen=True)
class IdTokenGrant:
    """A Google ID token that must be cryptographically verified."""

    id_token: str


@dataclass(frozen=True)
class ClaimGrant:
    """An identity profile already verified by a trusted caller."""

    claims: dict = field(default_factory=dict)


FederationGrant = Union[IdTokenGrant, ClaimGrant]
