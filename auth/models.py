"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; the service and routes do the work.

Layer rule: no imports from api/. gitlab_api/ models may be referenced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from gitlab_api.models import GitlabUser


@dataclass
class Person:
    """The public profile behind an account. slug doubles as the URL handle."""

    id: str
    slug: str
    name: str


@dataclass
class Account:
    """A local identity record linked to exactly one GitLab user.

    password_hash is the bcrypt digest; the plaintext only ever lives in the
    request that sets or checks it. gitlab_id is the numeric GitLab user id,
    which stays stable across GitLab username changes.
    """

    id: str
    username: str
    email: str
    password_hash: str
    person: Person
    gitlab_id: int | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None


@dataclass
class AccountToken:
    """A GitLab access token held on behalf of an account.

    An account may hold several. Only tokens that are active and not revoked
    are usable; AuthService.get_best_token() picks one of those.
    expires_at is None for tokens that never expire.
    """

    id: str
    account_id: str
    token: str
    gitlab_id: int | None = None
    active: bool = True
    revoked: bool = False
    expires_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def usable(self) -> bool:
        return self.active and not self.revoked


@dataclass
class TokenDetails:
    """What a verified bearer token resolves to."""

    token: str
    account_id: str
    person_id: str
    gitlab_user: GitlabUser
    valid: bool = True
