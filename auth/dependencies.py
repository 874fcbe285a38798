"""
auth/dependencies.py -- FastAPI Depends() helpers for token authentication.

The bearer token is a GitLab access token. Two headers are accepted, checked
in priority order:
  1. PRIVATE-TOKEN: <token>          -- GitLab's own convention.
  2. Authorization: Bearer <token>   -- generic API clients.

get_request_token() extracts it (HTTP 401 when absent).
get_current_account() resolves it to a local Account.
get_token_details() additionally confirms the token with GitLab.

Failures below the header check raise auth.exceptions types, which the
exception handler in api/main.py turns into the JSON error envelope.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi because this module is part
  of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Account, TokenDetails
from auth.service import AuthService

PRIVATE_TOKEN_HEADER = "PRIVATE-TOKEN"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def try_get_request_token(request: Request) -> str | None:
    """Return the bearer token from the request headers, or None. Never raises."""
    token = request.headers.get(PRIVATE_TOKEN_HEADER, "").strip()
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_request_token(request: Request) -> str:
    """Require a token header. Raises HTTP 401 if none is present."""
    token = try_get_request_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return token


def get_current_account(
    token: str = Depends(get_request_token),
    service: AuthService = Depends(get_auth_service),
) -> Account:
    """Resolve the request token to its local account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    return service.find_account_by_token(token)


def get_token_details(
    token: str = Depends(get_request_token),
    service: AuthService = Depends(get_auth_service),
) -> TokenDetails:
    """Resolve the request token locally and confirm it with GitLab."""
    return service.verify_token(token)
