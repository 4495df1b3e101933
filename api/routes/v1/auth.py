"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create an account (public)
  POST /api/v1/auth/login            -- username/email + password -> token pair (public)
  POST /api/v1/auth/refresh          -- rotate a refresh token -> new pair (public)
  POST /api/v1/auth/logout           -- revoke one refresh token (requires auth)
  POST /api/v1/auth/logout-all       -- revoke every refresh token of the caller (requires auth)
  POST /api/v1/auth/change-password  -- verify, re-hash, revoke all sessions (requires auth)
  GET  /api/v1/auth/profile          -- current account (requires auth)
  PUT  /api/v1/auth/profile          -- update name/username/email (requires auth)
  GET  /api/v1/auth/sessions         -- active refresh-token sessions (requires auth)

Guard order is explicit: the router-level enforce_rate_limit dependency runs
first, then get_current_claims on authenticated routes, then the handler.
Handlers are plain `def` so bcrypt and SQLite work runs in FastAPI's thread
pool instead of blocking the event loop.

Security:
  [C1] AuthService.login() equalizes timing for unknown identities -- never
       look users up here directly.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response

from api.limiter import enforce_rate_limit
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    RevokedResponse,
    SessionResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_claims
from auth.models import AccessClaims
from auth.service import AuthService

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Create an account. The default role is author."""
    user = service.register(body.username, body.email, body.password, name=body.name, role=body.role)
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Exchange credentials for an access/refresh token pair.

    Unknown identity and wrong password both come back as 401
    ERR_INVALID_CREDENTIALS with the same message.
    """
    _no_store(response)
    pair, user = service.login(body.identifier, body.password)
    return LoginResponse.from_login(pair, user)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    body: RefreshRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Consume a refresh token and return a new pair. The old token is dead afterwards."""
    _no_store(response)
    pair = service.refresh_token(body.refresh_token)
    return TokenResponse.from_pair(pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the presented refresh token. Always answers 200.

    The access token stays valid until it expires; clients drop it locally.
    """
    service.logout(claims.user_id, body.refresh_token if body else None)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/logout-all", response_model=RevokedResponse)
def logout_all(
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> RevokedResponse:
    revoked = service.logout_all(claims.user_id)
    return RevokedResponse(message="Logged out from all sessions.", revoked=revoked)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Change the caller's password and sign out every session."""
    service.change_password(claims.user_id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully. Please sign in again.")


@router.get("/auth/profile", response_model=UserResponse)
def get_profile(
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse.from_user(service.get_profile(claims.user_id))


@router.put("/auth/profile", response_model=UserResponse)
def update_profile(
    body: ProfileUpdate,
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Update name, username or email. Username and email stay unique."""
    user = service.update_profile(claims.user_id, name=body.name, username=body.username, email=body.email)
    return UserResponse.from_user(user)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> list[SessionResponse]:
    """List the caller's active refresh-token sessions, newest first."""
    return [SessionResponse.from_record(r) for r in service.list_sessions(claims.user_id)]
