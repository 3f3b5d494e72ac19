"""
API request and response models for Coursehub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every response uses one of two envelopes:
  success -- {"success": true,  "message": ..., "data": {...}}
  failure -- {"success": false, "message": ..., "error": {"code": ..., "detail": ...}}

Request fields that the browser client sends in camelCase (oldPassword,
userInfo, ...) are declared with aliases; populate_by_name lets API clients
use the snake_case names too.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.errors import BadRequest
from auth.models import ClaimGrant, FederationGrant, IdTokenGrant, Role, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9 ()\-]{7,20}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    role: Role = Role.USER

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        """bcrypt ignores everything past 72 bytes; refuse instead of truncating."""
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Deliberately loose: a malformed email must reach the service and fail
    with the same 401 as any other wrong credential.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password.

    Fields default to "" so a missing field reaches the service and gets the
    "All fields are required" message rather than a generic schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    old_password: str = Field(default="", alias="oldPassword", max_length=255)
    new_password: str = Field(default="", alias="newPassword", max_length=255)
    confirm_password: str = Field(default="", alias="confirmPassword", max_length=255)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password."""

    email: str = Field(default="", max_length=255)


class GoogleUserInfo(BaseModel):
    """A Google profile posted by the frontend (userInfo).

    Only string claims are accepted; unknown keys are dropped. A missing email
    or sub is left to OAuthFederation, which answers with a specific 400.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    sub: Optional[str] = Field(default=None, min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    picture: Optional[str] = Field(default=None, max_length=2048)


class GoogleLoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/google.

    Exactly one of token (a Google ID token) or userInfo (a profile the
    frontend already verified) must be present.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = Field(default=None, max_length=8192)
    user_info: Optional[GoogleUserInfo] = Field(default=None, alias="userInfo")

    def to_grant(self) -> FederationGrant:
        """Convert the body into exactly one federation grant. Raises BadRequest otherwise."""
        has_token = bool(self.token)
        claims = self.user_info.model_dump(exclude_none=True) if self.user_info is not None else {}
        has_claims = bool(claims)
        if has_token and has_claims:
            raise BadRequest("Send either token or userInfo, not both")
        if has_token:
            return IdTokenGrant(id_token=self.token)
        if has_claims:
            return ClaimGrant(claims=claims)
        raise BadRequest("Token or userInfo is required")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """A user record as returned to clients. Never carries a password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    phone: Optional[str] = None
    role: str
    provider: str
    picture: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        """Factory Method -- the mapping lives with the output model, not in routes."""
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            phone=user.phone,
            role=user.role.value,
            provider=user.provider.value,
            picture=user.picture,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class AuthData(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserPublic
    token: str
    token_type: str = "bearer"


class AuthResponse(BaseModel):
    """Response for register, login and Google login."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    data: AuthData


class IdentityPublic(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: str


class VerifyData(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: IdentityPublic


class VerifyResponse(BaseModel):
    """Response for GET /api/v1/auth/verify."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str = "Token is valid"
    data: VerifyData


class MessageResponse(BaseModel):
    """Success envelope with no payload (logout, forgot password, change password)."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
