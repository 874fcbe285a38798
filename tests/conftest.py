"""
tests/conftest.py -- Shared test fixtures for the auth service tests.

This module provides:
  - FakeGitlab: in-memory stand-in for GitlabRestClient that records calls
  - store / gitlab / service: function-scoped unit fixtures on an in-memory DB
  - RestHarness + api_client: TestClient wrapper for API integration tests
    that authenticates requests as a given account via PRIVATE-TOKEN

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/auth/core import so
get_settings() sees them when the modules read it at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

# CRITICAL: set before any project import -- see module docstring.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("GITLAB_ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.dependencies import PRIVATE_TOKEN_HEADER
from auth.models import Account
from auth.service import AuthService
from auth.store import AccountStore
from gitlab_api.client import GitlabClientError
from gitlab_api.models import GitlabGroup, GitlabUser, GitlabUserInGroup, GitlabUserToken

# ---------------------------------------------------------------------------
# Fake GitLab
# ---------------------------------------------------------------------------


class FakeGitlab:
    """In-memory GitLab with the same method surface as GitlabRestClient.

    calls records (method_name, kwargs) for every call, in order.
    fail maps a method name to an exception that method raises instead.
    Users, groups and tokens live in dicts; a token is "recognized" by
    get_user() only if this fake issued it (or it was added via add_token).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail: dict[str, Exception] = {}
        self.users: dict[int, GitlabUser] = {}
        self.groups: dict[int, GitlabGroup] = {}
        self.tokens: dict[str, int] = {}
        self.members: list[tuple[int, int]] = []
        self._next_id = 100

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def add_user(self, username: str, email: str = "") -> GitlabUser:
        """Seed a user that already exists on GitLab (no call recorded)."""
        user = GitlabUser(id=self._new_id(), username=username, name=username, email=email)
        self.users[user.id] = user
        return user

    def add_token(self, token: str, user: GitlabUser) -> None:
        self.tokens[token] = user.id

    def get_user(self, token: str) -> GitlabUser:
        self._record("get_user", token=token)
        user_id = self.tokens.get(token)
        if user_id is None:
            raise GitlabClientError(401, "GET /user failed: 401 Unauthorized")
        return self.users[user_id]

    def admin_create_user(self, email: str, name: str, username: str, password: str) -> GitlabUser:
        self._record("admin_create_user", email=email, name=name, username=username)
        if any(u.username == username for u in self.users.values()):
            raise GitlabClientError(409, "POST /users failed: 409 Username has already been taken")
        user = GitlabUser(id=self._new_id(), username=username, name=name, email=email)
        self.users[user.id] = user
        return user

    def admin_get_users(self, username: str | None = None) -> list[GitlabUser]:
        self._record("admin_get_users", username=username)
        return [u for u in self.users.values() if username is None or u.username == username]

    def admin_create_user_token(self, gitlab_user_id: int, token_name: str) -> GitlabUserToken:
        self._record("admin_create_user_token", gitlab_user_id=gitlab_user_id, token_name=token_name)
        token = GitlabUserToken(id=self._new_id(), name=token_name, token=f"glpat-{uuid4().hex}")
        self.tokens[token.token] = gitlab_user_id
        return token

    def admin_add_user_to_group(self, group_id: int, user_id: int) -> GitlabUserInGroup:
        self._record("admin_add_user_to_group", group_id=group_id, user_id=user_id)
        self.members.append((group_id, user_id))
        return GitlabUserInGroup(id=user_id, username=self.users[user_id].username, access_level=30)

    def admin_create_group(self, group_name: str, path: str) -> GitlabGroup:
        self._record("admin_create_group", group_name=group_name, path=path)
        group = GitlabGroup(id=self._new_id(), name=group_name, path=path)
        self.groups[group.id] = group
        return group

    def close(self) -> None:
        pass

    def _record(self, method: str, /, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        if method in self.fail:
            raise self.fail[method]

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def gitlab() -> FakeGitlab:
    return FakeGitlab()


@pytest.fixture
def service(gitlab: FakeGitlab, store: AccountStore) -> AuthService:
    return AuthService(gitlab, store)


# ---------------------------------------------------------------------------
# REST harness
# ---------------------------------------------------------------------------


class RestHarness:
    """Thin wrapper over TestClient that authenticates as an account.

    Passing account= sends the account's best token as PRIVATE-TOKEN;
    token= sends an explicit token instead. Neither means anonymous.
    """

    def __init__(self, client: TestClient, service: AuthService, gitlab: FakeGitlab) -> None:
        self.client = client
        self.service = service
        self.gitlab = gitlab

    def get(self, url: str, account: Account | None = None, token: str | None = None):
        return self.client.get(url, headers=self._headers(account, token))

    def post(self, url: str, body: Any = None, account: Account | None = None, token: str | None = None):
        return self.client.post(url, json=body, headers=self._headers(account, token))

    def register(self, username: str, password: str = "s3cret-pass") -> dict:
        """Register through the API and return the response JSON."""
        resp = self.post(
            "/api/v1/auth/register",
            {"username": username, "email": f"{username}@example.com", "password": password},
        )
        assert resp.status_code == 201, f"registration of {username} failed: {resp.text}"
        return resp.json()

    def _headers(self, account: Account | None, token: str | None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if token is None and account is not None:
            best = self.service.get_best_token(account)
            if best is None:
                raise RuntimeError(f"No usable token for account {account.username}")
            token = best.token
        if token is not None:
            headers[PRIVATE_TOKEN_HEADER] = token
        return headers


def _patch_lifespan(store: AccountStore, gitlab: FakeGitlab, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, the fake GitLab and a service built on them into
    app.state so routes never touch the real DB file or network.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.gitlab = gitlab
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[RestHarness, None, None]:
    """Yield a RestHarness over the real app with isolated collaborators.

    One client per test module; state accumulates across the module's tests,
    so each test registers its own usernames.
    """
    store = AccountStore("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    gitlab = FakeGitlab()
    service = AuthService(gitlab, store)

    app.router.lifespan_context = _patch_lifespan(store, gitlab, service)

    # base_url host must pass TrustedHostMiddleware.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield RestHarness(client, service, gitlab)

    store.close()
