"""
gitlab_api/client.py -- Thin synchronous client for the GitLab REST API (v4).

Two kinds of credentials are used:
  - the caller's own token for get_user() (proves the token is still valid);
  - the admin token from settings for every admin_* call (user, group and
    token provisioning).

Both are sent as the PRIVATE-TOKEN header, which GitLab accepts for personal
access tokens and impersonation tokens alike.

Error contract -- raw requests exceptions never leave this module:
  GitlabConnectError  connection refused, DNS failure, timeout (no status)
  GitlabClientError   4xx response; status_code carries the HTTP status
  GitlabServerError   5xx response
  GitlabError         anything else (bad JSON, a body of the wrong shape,
                      too many redirects, ...)

No retries. The auth service treats every failure as terminal for the
current request.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import requests

from gitlab_api.models import GitlabGroup, GitlabUser, GitlabUserInGroup, GitlabUserToken

logger = logging.getLogger("mlreef.gitlab")

# Developer access: push to non-protected branches, which is what a user needs
# inside their own namespace group.
DEVELOPER_ACCESS = 30

_TOKEN_SCOPES = ["api", "read_user"]

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GitlabError(Exception):
    """Base class for every failure talking to GitLab."""

    status_code: int | None = None


class GitlabConnectError(GitlabError):
    """GitLab could not be reached at all."""


class GitlabClientError(GitlabError):
    """GitLab rejected the request with a 4xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitlabServerError(GitlabError):
    """GitLab failed with a 5xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GitlabRestClient:
    """Client for the handful of GitLab endpoints the auth service needs.

    Usage:
        client = GitlabRestClient("https://gitlab.example.com", admin_token="...")
        user = client.get_user(user_token)
        client.close()
    """

    def __init__(self, root_url: str, admin_token: str, timeout: float = 10.0) -> None:
        self.api_url = f"{root_url.rstrip('/')}/api/v4"
        self.timeout = timeout
        self._admin_token = admin_token
        # One session per client for connection pooling. GitLab does not
        # redirect API calls, so a low redirect cap is plenty.
        self._session = requests.Session()
        self._session.max_redirects = 3

    # ------------------------------------------------------------------
    # User-token endpoints
    # ------------------------------------------------------------------

    def get_user(self, token: str) -> GitlabUser:
        """Return the GitLab user that owns the given token."""
        resp = self._request("GET", "/user", token)
        return _parse(resp, GitlabUser.from_json)

    # ------------------------------------------------------------------
    # Admin endpoints
    # ------------------------------------------------------------------

    def admin_create_user(self, email: str, name: str, username: str, password: str) -> GitlabUser:
        body = {
            "email": email,
            "name": name,
            "username": username,
            "password": password,
            "skip_confirmation": True,
        }
        resp = self._request("POST", "/users", self._admin_token, json=body)
        return _parse(resp, GitlabUser.from_json)

    def admin_get_users(self, username: str | None = None) -> list[GitlabUser]:
        """Return users on the instance, following GitLab's page headers.

        With username, GitLab filters server-side and answers with at most one
        user. Without it every user on the instance is fetched.
        """
        params: dict[str, Any] = {"per_page": 100}
        if username is not None:
            params["username"] = username
        users: list[GitlabUser] = []
        page = "1"
        while page:
            resp = self._request("GET", "/users", self._admin_token, params={**params, "page": page})
            users.extend(_parse(resp, _user_list))
            page = resp.headers.get("X-Next-Page", "")
        return users

    def admin_create_user_token(self, gitlab_user_id: int, token_name: str) -> GitlabUserToken:
        body = {"name": token_name, "scopes": _TOKEN_SCOPES}
        resp = self._request("POST", f"/users/{gitlab_user_id}/impersonation_tokens", self._admin_token, json=body)
        return _parse(resp, GitlabUserToken.from_json)

    def admin_add_user_to_group(self, group_id: int, user_id: int) -> GitlabUserInGroup:
        body = {"user_id": user_id, "access_level": DEVELOPER_ACCESS}
        resp = self._request("POST", f"/groups/{group_id}/members", self._admin_token, json=body)
        return _parse(resp, GitlabUserInGroup.from_json)

    def admin_create_group(self, group_name: str, path: str) -> GitlabGroup:
        resp = self._request("POST", "/groups", self._admin_token, json={"name": group_name, "path": path})
        return _parse(resp, GitlabGroup.from_json)

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            resp = self._session.request(
                method,
                url,
                headers={"PRIVATE-TOKEN": token},
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise GitlabConnectError(f"Cannot reach GitLab at {self.api_url}: {exc}") from exc
        except requests.RequestException as exc:
            raise GitlabError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code >= 500:
            logger.warning("GitLab %s %s -> %d", method, path, resp.status_code)
            raise GitlabServerError(resp.status_code, f"{method} {path} failed: {_error_message(resp)}")
        if resp.status_code >= 400:
            logger.info("GitLab %s %s -> %d", method, path, resp.status_code)
            raise GitlabClientError(resp.status_code, f"{method} {path} failed: {_error_message(resp)}")
        return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise GitlabError(f"GitLab returned a non-JSON body (status {resp.status_code})") from exc


def _parse(resp: requests.Response, factory: Callable[[Any], T]) -> T:
    """Map a success body onto a model. A body of the wrong shape is a GitlabError."""
    data = _json(resp)
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise GitlabError(f"Unexpected GitLab response body (status {resp.status_code}): {exc!r}") from exc


def _user_list(data: Any) -> list[GitlabUser]:
    if not isinstance(data, list):
        raise TypeError(f"expected a list of users, got {type(data).__name__}")
    return [GitlabUser.from_json(u) for u in data]


def _error_message(resp: requests.Response) -> str:
    """Pull GitLab's error text out of a failed response.

    GitLab uses {"message": ...} for most errors and {"error": ...} for
    parameter validation. message may itself be a dict of field errors.
    """
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text[:200]}"
    if isinstance(data, dict):
        detail = data.get("message") or data.get("error") or data
        return f"{resp.status_code} {detail}"
    return f"{resp.status_code} {data}"
