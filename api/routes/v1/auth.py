"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create a local account; 201 with user + token
  POST /api/v1/auth/login            -- password login; user + token
  POST /api/v1/auth/logout           -- stateless; tells the client to drop its token
  POST /api/v1/auth/change-password  -- requires auth
  POST /api/v1/auth/forgot-password  -- always the same answer
  GET  /api/v1/auth/verify           -- requires auth; echoes the token identity
  POST /api/v1/auth/google           -- Google sign-in (alias: /auth/google-login)

Security:
  [H2] register, login and forgot-password share one AttemptLimiter budget
       per client address (Depends(auth_rate_limit)).
  [C1] login goes through CredentialService.login(), which equalizes timing.
  [M5] Cache-Control: no-store on responses that carry a token.
  Role elevation on register is honored only for callers holding an admin token.

Handlers are plain `def`, not `async def`: FastAPI runs them in its thread
pool, so bcrypt work never blocks the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import auth_rate_limit
from api.models import (
    AuthData,
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleLoginRequest,
    IdentityPublic,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserPublic,
    VerifyData,
    VerifyResponse,
)
from auth.credentials import CredentialService
from auth.dependencies import get_current_identity, try_get_identity
from auth.errors import BadRequest, operation_boundary
from auth.models import Identity, Role
from auth.oauth import OAuthFederation

# Auth policy:
# - POST /api/v1/auth/register:         public, rate-limited (admin token needed for role=admin)
# - POST /api/v1/auth/login:            public, rate-limited
# - POST /api/v1/auth/logout:           public -- tokens are stateless
# - POST /api/v1/auth/forgot-password:  public, rate-limited
# - POST /api/v1/auth/change-password:  requires auth (get_current_identity)
# - GET  /api/v1/auth/verify:           requires auth (get_current_identity)
# - POST /api/v1/auth/google:           public
router = APIRouter()


def _auth_response(message: str, user, token: str) -> AuthResponse:
    return AuthResponse(
        message=message,
        data=AuthData(user=UserPublic.from_user(user), token=token),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(auth_rate_limit)],
)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a local account and return it with a session token.

    The duplicate-email message names the field ("already exists"); this
    reveals that the email is registered, unlike login.
    """
    if body.role is Role.ADMIN:
        caller = try_get_identity(request)
        if caller is None or not caller.is_admin:
            raise BadRequest("Only administrators can create admin accounts")

    service: CredentialService = request.app.state.credentials
    with operation_boundary("Registration failed"):
        user, token = service.register(
            name=body.name,
            email=body.email,
            password=body.password,
            phone=body.phone,
            role=body.role,
        )
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _auth_response("User registered successfully", user, token)


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(auth_rate_limit)])
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password return the same 401 body.
    """
    service: CredentialService = request.app.state.credentials
    with operation_boundary("Login failed"):
        user, token = service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _auth_response("Login successful", user, token)


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> MessageResponse:
    """Tokens are not tracked server-side; the client discards its copy."""
    return MessageResponse(message="Logout successful. Please remove the token from client storage.")


@router.post(
    "/auth/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(auth_rate_limit)],
)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Accept a password reset request. The answer never reveals whether the email exists."""
    service: CredentialService = request.app.state.credentials
    with operation_boundary("Failed to process password reset request"):
        message = service.forgot_password(body.email)
    return MessageResponse(message=message)


@router.post("/auth/google", response_model=AuthResponse)
@router.post("/auth/google-login", response_model=AuthResponse, include_in_schema=False)
def google_login(request: Request, response: Response, body: GoogleLoginRequest) -> AuthResponse:
    """Sign in with a Google ID token or a pre-verified Google profile."""
    grant = body.to_grant()
    federation: OAuthFederation = request.app.state.federation
    with operation_boundary("Authentication failed"):
        user, token = federation.login(grant)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _auth_response("Login successful", user, token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Change the caller's password. The old password must verify."""
    service: CredentialService = request.app.state.credentials
    with operation_boundary("Failed to change password"):
        service.change_password(
            identity.user_id,
            body.old_password,
            body.new_password,
            body.confirm_password,
        )
    return MessageResponse(message="Password changed successfully")


@router.get("/auth/verify", response_model=VerifyResponse)
def verify(identity: Identity = Depends(get_current_identity)) -> VerifyResponse:
    """Return the identity bound to the caller's token."""
    return VerifyResponse(data=VerifyData(user=IdentityPublic(id=identity.user_id, role=identity.role.value)))
