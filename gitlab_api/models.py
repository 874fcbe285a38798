"""
gitlab_api/models.py -- Dataclasses for the GitLab resources this service touches.

Only the fields the auth service reads are mapped. GitLab returns many more;
from_json() ignores the rest so API additions upstream never break parsing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class GitlabUser:
    id: int
    username: str
    name: str = ""
    email: str = ""
    state: str = "active"

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GitlabUser:
        return cls(
            id=int(data["id"]),
            username=data["username"],
            name=data.get("name") or "",
            email=data.get("email") or "",
            state=data.get("state") or "active",
        )


@dataclass
class GitlabGroup:
    id: int
    name: str
    path: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GitlabGroup:
        return cls(id=int(data["id"]), name=data["name"], path=data.get("path") or "")


@dataclass
class GitlabUserToken:
    """An impersonation token issued by an admin on behalf of a user.

    token is only present in the creation response -- GitLab never returns it
    again, so the caller must persist it immediately.
    """

    id: int
    name: str
    token: str
    active: bool = True
    revoked: bool = False
    expires_at: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GitlabUserToken:
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            token=data["token"],
            active=bool(data.get("active", True)),
            revoked=bool(data.get("revoked", False)),
            expires_at=data.get("expires_at"),
        )


@dataclass
class GitlabUserInGroup:
    id: int  # GitLab user id of the member
    username: str
    access_level: int

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GitlabUserInGroup:
        return cls(
            id=int(data["id"]),
            username=data.get("username") or "",
            access_level=int(data.get("access_level", 0)),
        )
