"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

get_current_claims() verifies the "Authorization: Bearer <token>" header
statelessly (signature + expiry, no store lookup) and returns AccessClaims.

Failures raise AuthError subclasses, which api/main.py renders as 401 with a
machine-readable code:
  no header                 -> ERR_AUTH_MISSING_TOKEN
  not "Bearer <token>"      -> ERR_AUTH_TOKEN_INVALID
  bad signature / malformed -> ERR_AUTH_TOKEN_INVALID
  expired                   -> ERR_AUTH_TOKEN_EXPIRED

This module may import from fastapi because it is part of the FastAPI
dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import MissingToken, TokenInvalid
from auth.models import AccessClaims
from auth.service import AuthService

_BEARER_PREFIX = "bearer "


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state at startup."""
    return request.app.state.auth_service


def get_current_claims(request: Request) -> AccessClaims:
    """Require a valid access token. Use as a FastAPI dependency:

    @router.get("/protected")
    def route(claims: AccessClaims = Depends(get_current_claims)): ...
    """
    header = request.headers.get("Authorization", "")
    if not header.strip():
        raise MissingToken()
    if not header.lower().startswith(_BEARER_PREFIX):
        raise TokenInvalid("Authorization header must be in format: Bearer <token>")
    token = header[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise MissingToken()
    return get_auth_service(request).tokens.verify_access_token(token)
