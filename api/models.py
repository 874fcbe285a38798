"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.models import Account, AccountToken, TokenDetails
from auth.tokens import redact_token

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# GitLab's own username rule: starts with an alphanumeric, then alphanumerics,
# underscore, dot or dash.
USERNAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"

# Deliberately loose -- GitLab does the authoritative check on user creation.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Either identifier may be given; when both are, an account matching
    either one with the right password is accepted.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not self.username and not self.email:
            raise ValueError("username or email is required")
        return self


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    password min_length matches GitLab's default minimum so the user creation
    step does not fail on a password GitLab would refuse.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=2, max_length=255, pattern=USERNAME_PATTERN)
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """An account as returned by login and registration.

    access_token is the account's best GitLab token. It is only present on
    login and registration responses, never on /me.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    person_id: str
    person_slug: str
    gitlab_id: Optional[int]
    last_login: Optional[str] = None
    access_token: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account, token: Optional[AccountToken] = None) -> "AccountResponse":
        """Build an AccountResponse from a domain Account and, optionally, its token."""
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            person_id=account.person.id,
            person_slug=account.person.slug,
            gitlab_id=account.gitlab_id,
            last_login=account.last_login.isoformat() if account.last_login else None,
            access_token=token.token if token else None,
        )


class GitlabUserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    name: str
    email: str
    state: str


class TokenDetailsResponse(BaseModel):
    """Response for GET /api/v1/auth/whoami. The token itself is redacted."""

    model_config = ConfigDict(frozen=True)

    token: str
    account_id: str
    person_id: str
    gitlab_user: GitlabUserResponse
    valid: bool

    @classmethod
    def from_details(cls, details: TokenDetails) -> "TokenDetailsResponse":
        user = details.gitlab_user
        return cls(
            token=redact_token(details.token),
            account_id=details.account_id,
            person_id=details.person_id,
            gitlab_user=GitlabUserResponse(
                id=user.id,
                username=user.username,
                name=user.name,
                email=user.email,
                state=user.state,
            ),
            valid=details.valid,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
