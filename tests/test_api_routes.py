"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> AccountStore -> response model serialization, with GitLab
replaced by the FakeGitlab wired in through the patched lifespan.

Coverage:
  - POST /register: 201 with token, 409 duplicate, 422 bad body, 502 step failure
  - POST /login: by username, by email, wrong password, missing identifier
  - GET /me: PRIVATE-TOKEN, Bearer, missing token, unknown token
  - GET /whoami: redacted token plus the GitLab user

Fixtures used (from conftest.py):
  - api_client: RestHarness sharing one app, store and FakeGitlab per module.
    Usernames are unique per test because state accumulates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gitlab_api.client import GitlabConnectError, GitlabServerError

if TYPE_CHECKING:
    from conftest import RestHarness


class TestRegisterRoute:
    def test_register_returns_account_and_token(self, api_client: RestHarness) -> None:
        data = api_client.register("reg-ok")
        assert data["username"] == "reg-ok"
        assert data["email"] == "reg-ok@example.com"
        assert data["person_slug"] == "reg-ok"
        assert data["gitlab_id"] is not None
        assert data["access_token"].startswith("glpat-")
        assert "password" not in data
        assert "password_hash" not in data

    def test_register_response_is_not_cacheable(self, api_client: RestHarness) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            {"username": "reg-cache", "email": "reg-cache@example.com", "password": "s3cret-pass"},
        )
        assert resp.status_code == 201
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_duplicate_username_is_409(self, api_client: RestHarness) -> None:
        api_client.register("reg-dup")
        resp = api_client.post(
            "/api/v1/auth/register",
            {"username": "reg-dup", "email": "another@example.com", "password": "s3cret-pass"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_already_exists"

    def test_register_short_password_is_422(self, api_client: RestHarness) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            {"username": "reg-short", "email": "reg-short@example.com", "password": "short"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_register_bad_username_is_422(self, api_client: RestHarness) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            {"username": "-leading-dash", "email": "dash@example.com", "password": "s3cret-pass"},
        )
        assert resp.status_code == 422

    def test_register_group_failure_is_502(self, api_client: RestHarness) -> None:
        api_client.gitlab.fail["admin_create_group"] = GitlabServerError(500, "boom")
        try:
            resp = api_client.post(
                "/api/v1/auth/register",
                {"username": "reg-fail", "email": "reg-fail@example.com", "password": "s3cret-pass"},
            )
        finally:
            api_client.gitlab.fail.clear()

        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "gitlab_group_creation_failed"
        assert api_client.service.store.find_by_username("reg-fail") is None


class TestLoginRoute:
    def test_login_by_username(self, api_client: RestHarness) -> None:
        registered = api_client.register("login-user")
        resp = api_client.post("/api/v1/auth/login", {"username": "login-user", "password": "s3cret-pass"})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["id"] == registered["id"]
        assert data["access_token"] == registered["access_token"]
        assert data["last_login"] is not None
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_by_email(self, api_client: RestHarness) -> None:
        api_client.register("login-mail")
        resp = api_client.post("/api/v1/auth/login", {"email": "login-mail@example.com", "password": "s3cret-pass"})
        assert resp.status_code == 200
        assert resp.json()["username"] == "login-mail"

    def test_wrong_password_is_401(self, api_client: RestHarness) -> None:
        api_client.register("login-bad")
        resp = api_client.post("/api/v1/auth/login", {"username": "login-bad", "password": "wrong-pass"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unknown_user_matches_wrong_password(self, api_client: RestHarness) -> None:
        resp = api_client.post("/api/v1/auth/login", {"username": "camillo", "password": "s3cret-pass"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_missing_identifier_is_422(self, api_client: RestHarness) -> None:
        resp = api_client.post("/api/v1/auth/login", {"password": "s3cret-pass"})
        assert resp.status_code == 422


class TestTokenRoutes:
    def test_me_with_private_token(self, api_client: RestHarness) -> None:
        registered = api_client.register("me-user")
        account = api_client.service.store.find_by_id(registered["id"])
        resp = api_client.get("/api/v1/auth/me", account=account)
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "me-user"
        assert data["access_token"] is None

    def test_me_with_bearer_header(self, api_client: RestHarness) -> None:
        registered = api_client.register("me-bearer")
        resp = api_client.client.get(
            "/api/v1/auth/me",
            headers={"Authorization": f"Bearer {registered['access_token']}"},
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == registered["id"]

    def test_me_without_token_is_401(self, api_client: RestHarness) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_unknown_token_is_401(self, api_client: RestHarness) -> None:
        resp = api_client.get("/api/v1/auth/me", token="glpat-never-issued")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_whoami_redacts_token(self, api_client: RestHarness) -> None:
        registered = api_client.register("whoami-user")
        token = registered["access_token"]
        resp = api_client.get("/api/v1/auth/whoami", token=token)
        assert resp.status_code == 200
        data = resp.json()
        assert data["account_id"] == registered["id"]
        assert data["gitlab_user"]["username"] == "whoami-user"
        assert data["valid"] is True
        assert data["token"] != token
        assert data["token"].startswith(token[:4])
        assert token not in resp.text

    def test_whoami_when_gitlab_unreachable_is_503(self, api_client: RestHarness) -> None:
        registered = api_client.register("whoami-down")
        api_client.gitlab.fail["get_user"] = GitlabConnectError("refused")
        try:
            resp = api_client.get("/api/v1/auth/whoami", token=registered["access_token"])
        finally:
            api_client.gitlab.fail.clear()
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "gitlab_connect_failed"
