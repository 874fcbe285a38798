"""
auth/exceptions.py -- Error taxonomy for the account authentication service.

Every public AuthService operation raises only these. Each class carries a
stable machine-readable code and the HTTP status the API layer answers with,
so api/main.py needs a single exception handler for the whole family.

Callers can tell "your credentials are wrong" (InvalidCredentials and its
subclass UpstreamConflict) from "the system could not finish provisioning"
(ProvisioningError, UpstreamUnavailable), and nothing finer than that.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth service failures."""

    code = "auth_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidCredentials(AuthError):
    """Bad password, unknown or unusable token, or a dangling token reference."""

    code = "bad_credentials"
    status_code = 401


class UpstreamConflict(InvalidCredentials):
    """GitLab did not accept a token we hold for the account."""

    code = "gitlab_user_not_existing"
    status_code = 409


class AccountAlreadyExists(AuthError):
    """The username or email is already taken by a local account."""

    code = "user_already_exists"
    status_code = 409

    def __init__(self, username: str, email: str) -> None:
        super().__init__(f"User already exists: username={username} or email={email}")
        self.username = username
        self.email = email


class UpstreamUnavailable(AuthError):
    """GitLab could not be reached."""

    code = "gitlab_connect_failed"
    status_code = 503


class ProvisioningError(AuthError):
    """A GitLab provisioning step failed during registration."""

    code = "gitlab_provisioning_failed"
    status_code = 502


class GroupCreationFailed(ProvisioningError):
    code = "gitlab_group_creation_failed"


class UserCreationFailed(ProvisioningError):
    code = "gitlab_user_creation_failed"


class TokenCreationFailed(ProvisioningError):
    code = "gitlab_user_token_creation_failed"


class GroupMembershipFailed(ProvisioningError):
    code = "gitlab_user_adding_to_group_failed"
