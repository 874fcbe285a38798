"""
api/routes/v1/auth.py -- Authentication and registration REST endpoints.

Routes:
  POST /api/v1/auth/login     -- password login; returns account + best token
  POST /api/v1/auth/register  -- provision on GitLab; returns account + token
  GET  /api/v1/auth/me        -- account owning the request token (requires auth)
  GET  /api/v1/auth/whoami    -- token details confirmed with GitLab (requires auth)

Handlers are plain `def` so FastAPI runs them in its thread pool: the service
does blocking bcrypt work and blocking HTTP calls to GitLab.

Service failures are not caught here. They are auth.exceptions types and the
handler in api/main.py maps them to status codes and the error envelope.

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AccountResponse, LoginRequest, RegisterRequest, TokenDetailsResponse
from auth.dependencies import get_current_account, get_token_details
from auth.models import Account, TokenDetails
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:     public, rate limited
# - POST /api/v1/auth/register:  public, rate limited
# - GET  /api/v1/auth/me:        requires token (get_current_account)
# - GET  /api/v1/auth/whoami:    requires token (get_token_details)
router = APIRouter()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AccountResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email plus password.

    Wrong username, wrong email and wrong password all produce the same
    "bad_credentials" error so the response does not reveal which accounts
    exist.
    """
    service: AuthService = request.app.state.auth_service
    account = service.login(body.password, username=body.username, email=body.email)
    token = service.get_best_token(account)
    resp = JSONResponse(status_code=200, content=AccountResponse.from_account(account, token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=AccountResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create the GitLab user, group and token, then the local account."""
    service: AuthService = request.app.state.auth_service
    account = service.register(body.password, username=body.username, email=body.email)
    token = service.get_best_token(account)
    resp = JSONResponse(status_code=201, content=AccountResponse.from_account(account, token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/me", response_model=AccountResponse)
def me(account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the account that owns the request token. No GitLab round-trip."""
    return AccountResponse.from_account(account)


@router.get("/auth/whoami", response_model=TokenDetailsResponse)
def whoami(details: TokenDetails = Depends(get_token_details)) -> TokenDetailsResponse:
    """Return what the request token resolves to, confirmed with GitLab."""
    return TokenDetailsResponse.from_details(details)
