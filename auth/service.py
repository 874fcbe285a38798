"""
auth/service.py -- Account authentication service backed by GitLab.

GitLab owns the real user, group and token lifecycle. This service keeps the
local account records in step with it:

  login()     checks a password against the local bcrypt hash, picks the
              account's best token and confirms GitLab still accepts it.
  register()  provisions group -> user -> token -> membership on GitLab,
              strictly in that order (each step needs the previous step's
              output), then persists person, account and token in one
              transaction.

Error contract: credential and GitLab failures surface only as
auth.exceptions types. GitLab failures are logged here with tokens redacted
and re-raised with `from exc`. Nothing is retried. A UNIQUE violation on
persist becomes AccountAlreadyExists; any other store failure
(sqlalchemy.exc.SQLAlchemyError) propagates unchanged to the API's catch-all
500 handler.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from auth.exceptions import (
    AccountAlreadyExists,
    GroupCreationFailed,
    GroupMembershipFailed,
    InvalidCredentials,
    TokenCreationFailed,
    UpstreamConflict,
    UpstreamUnavailable,
    UserCreationFailed,
)
from auth.models import Account, AccountToken, Person, TokenDetails
from auth.tokens import DUMMY_HASH, hash_password, redact_token, verify_password
from gitlab_api.client import GitlabClientError, GitlabConnectError, GitlabError
from gitlab_api.models import GitlabGroup, GitlabUser, GitlabUserInGroup, GitlabUserToken

if TYPE_CHECKING:
    from auth.store import AccountStore
    from core.config import Settings
    from gitlab_api.client import GitlabRestClient

logger = logging.getLogger("mlreef.auth")

# Sort key for tokens without an expiry: after every dated token.
_NEVER = datetime.max.replace(tzinfo=timezone.utc)


class AuthService:
    """Login, registration and token resolution for local accounts.

    Collaborators are injected so tests can pass an in-memory store and a
    fake GitLab client.
    """

    def __init__(
        self,
        gitlab: GitlabRestClient,
        store: AccountStore,
        allow_existing_gitlab_user: bool = False,
        user_name_prefix: str = "mlreef-user-",
        group_name_prefix: str = "mlreef-group-",
        token_name: str = "mlreef-user-token",
    ) -> None:
        self.gitlab = gitlab
        self.store = store
        self.allow_existing_gitlab_user = allow_existing_gitlab_user
        self.user_name_prefix = user_name_prefix
        self.group_name_prefix = group_name_prefix
        self.token_name = token_name

    @classmethod
    def from_settings(cls, gitlab: GitlabRestClient, store: AccountStore, settings: Settings) -> AuthService:
        return cls(
            gitlab,
            store,
            allow_existing_gitlab_user=settings.gitlab_allow_existing_user,
            user_name_prefix=settings.gitlab_user_name_prefix,
            group_name_prefix=settings.gitlab_group_name_prefix,
            token_name=settings.gitlab_token_name,
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, password: str, username: str | None = None, email: str | None = None) -> Account:
        """Authenticate by username and/or email plus password.

        Both identifiers are looked up when given; the first candidate whose
        hash verifies wins. bcrypt always runs at least once so an unknown
        identifier costs the same as a wrong password.

        Raises:
            InvalidCredentials: no matching account, wrong password, or no
                usable token.
            UpstreamConflict: GitLab no longer accepts the account's token.
            UpstreamUnavailable: GitLab could not be reached.
        """
        candidates: list[Account] = []
        if username is not None:
            by_username = self.store.find_by_username(username)
            if by_username is not None:
                candidates.append(by_username)
        if email is not None:
            by_email = self.store.find_by_email(email)
            if by_email is not None and all(c.id != by_email.id for c in candidates):
                candidates.append(by_email)

        if not candidates:
            verify_password(password, DUMMY_HASH)
            logger.info("Login failed: no account for username=%s email=%s", username, email)
            raise InvalidCredentials("Invalid username, email or password.")

        found = [a for a in candidates if verify_password(password, a.password_hash)]
        if not found:
            logger.info("Login failed: wrong password for username=%s email=%s", username, email)
            raise InvalidCredentials("Invalid username, email or password.")
        account = found[0]

        token = self.get_best_token(account)
        if token is None:
            logger.warning("Login failed: account %s has no usable token", account.username)
            raise InvalidCredentials("No usable token for this account.")

        # GitLab is the source of truth for whether the token still works.
        self.resolve_external_user(token.token)

        now = datetime.now(timezone.utc)
        self.store.update_last_login(account.id, now)
        logger.info("Login succeeded for %s", account.username)
        return replace(account, last_login=now)

    def get_best_token(self, account: Account) -> AccountToken | None:
        """Return the usable token that expires first, or None.

        Tokens without an expiry count as expiring last. Among equal expiries
        the oldest token wins.
        """
        usable = [t for t in self.store.find_tokens_by_account_id(account.id) if t.usable]
        if not usable:
            return None
        return min(usable, key=lambda t: t.expires_at or _NEVER)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, password: str, username: str, email: str) -> Account:
        """Provision a GitLab identity and persist the matching local records.

        Raises:
            AccountAlreadyExists: username or email is taken locally. Checked
                before any GitLab call, and again by the UNIQUE constraints
                when a concurrent registration wins the race.
            GroupCreationFailed / UserCreationFailed / TokenCreationFailed /
            GroupMembershipFailed: the named GitLab step failed. No local
                rows are written in that case.
        """
        by_username = self.store.find_by_username(username)
        by_email = self.store.find_by_email(email)
        if by_username is not None or by_email is not None:
            logger.info("Registration refused: username=%s or email=%s already taken", username, email)
            raise AccountAlreadyExists(username, email)

        password_hash = hash_password(password)

        group = self._create_gitlab_group(username)
        gitlab_user = self._create_gitlab_user(username=username, email=email, password=password)
        gitlab_token = self._create_gitlab_token(username, gitlab_user)
        self._add_gitlab_user_to_group(gitlab_user, group)

        person = Person(id=str(uuid4()), slug=username, name=username)
        account = Account(
            id=str(uuid4()),
            username=username,
            email=email,
            password_hash=password_hash,
            person=person,
            gitlab_id=gitlab_user.id,
        )
        token = AccountToken(
            id=str(uuid4()),
            account_id=account.id,
            token=gitlab_token.token,
            gitlab_id=gitlab_token.id,
            active=gitlab_token.active,
            revoked=gitlab_token.revoked,
            expires_at=_parse_expiry(gitlab_token.expires_at),
        )

        try:
            self.store.create_identity(person, account, token)
        except IntegrityError as exc:
            # Lost the race against a concurrent registration. The GitLab
            # resources created above stay behind and need manual cleanup.
            logger.warning(
                "Registration of %s hit a unique constraint after provisioning gitlab user %d",
                username,
                gitlab_user.id,
            )
            raise AccountAlreadyExists(username, email) from exc

        logger.info("Registered account %s (gitlab user %d, group %d)", username, gitlab_user.id, group.id)
        return account

    def _create_gitlab_group(self, group_name: str, path: str | None = None) -> GitlabGroup:
        gitlab_name = f"{self.group_name_prefix}{group_name}"
        gitlab_path = path or f"{group_name}-path"
        try:
            return self.gitlab.admin_create_group(group_name=gitlab_name, path=gitlab_path)
        except GitlabError as exc:
            logger.error("Cannot create GitLab group %s: %s", gitlab_name, exc)
            raise GroupCreationFailed(f"Cannot create group {group_name}") from exc

    def _create_gitlab_user(self, username: str, email: str, password: str) -> GitlabUser:
        gitlab_name = f"{self.user_name_prefix}{username}"
        try:
            return self.gitlab.admin_create_user(email=email, name=gitlab_name, username=username, password=password)
        except GitlabClientError as exc:
            if exc.status_code == 409 and self.allow_existing_gitlab_user:
                logger.warning("GitLab user %s already exists, adopting it (development fallback)", username)
                return self._find_existing_gitlab_user(username)
            logger.error("Cannot create GitLab user %s: %s", username, exc)
            raise UserCreationFailed(f"Cannot create user for {username}") from exc
        except GitlabError as exc:
            logger.error("Cannot create GitLab user %s: %s", username, exc)
            raise UserCreationFailed(f"Cannot create user for {username}") from exc

    def _find_existing_gitlab_user(self, username: str) -> GitlabUser:
        try:
            users = self.gitlab.admin_get_users(username=username)
        except GitlabError as exc:
            logger.error("Cannot list GitLab users while adopting %s: %s", username, exc)
            raise UserCreationFailed(f"Cannot create user for {username}") from exc
        for user in users:
            if user.username == username:
                return user
        logger.error("GitLab reported %s as existing but it is not listed", username)
        raise UserCreationFailed(f"Cannot create user for {username}")

    def _create_gitlab_token(self, username: str, gitlab_user: GitlabUser) -> GitlabUserToken:
        try:
            return self.gitlab.admin_create_user_token(gitlab_user_id=gitlab_user.id, token_name=self.token_name)
        except GitlabError as exc:
            logger.error("Cannot create GitLab token for %s: %s", username, exc)
            raise TokenCreationFailed(f"Cannot create user token for {username}") from exc

    def _add_gitlab_user_to_group(self, user: GitlabUser, group: GitlabGroup) -> GitlabUserInGroup:
        try:
            return self.gitlab.admin_add_user_to_group(group_id=group.id, user_id=user.id)
        except GitlabError as exc:
            logger.error("Cannot add GitLab user %s to group %s: %s", user.username, group.name, exc)
            raise GroupMembershipFailed(f"Cannot add user {user.username} to group {group.name}") from exc

    # ------------------------------------------------------------------
    # Token resolution
    # ------------------------------------------------------------------

    def resolve_external_user(self, token: str) -> GitlabUser:
        """Return the GitLab user owning the token.

        Raises:
            UpstreamUnavailable: GitLab could not be reached.
            UpstreamConflict: GitLab answered but did not accept the token
                (401, 404, anything else).
        """
        try:
            return self.gitlab.get_user(token)
        except GitlabConnectError as exc:
            logger.error("Cannot reach GitLab to resolve token %s: %s", redact_token(token), exc)
            raise UpstreamUnavailable("Cannot reach GitLab to resolve the user.") from exc
        except GitlabError as exc:
            logger.error("GitLab did not accept token %s: %s", redact_token(token), exc)
            raise UpstreamConflict(f"Cannot find GitLab user with this token {redact_token(token)}") from exc

    def build_token_details(self, token: str, account: Account, gitlab_user: GitlabUser) -> TokenDetails:
        return TokenDetails(
            token=token,
            account_id=account.id,
            person_id=account.person.id,
            gitlab_user=gitlab_user,
            valid=True,
        )

    def find_account_by_token(self, token: str) -> Account:
        """Return the account owning a bearer token.

        Tokens that are inactive, revoked or past their expiry are rejected
        the same way as unknown ones.

        Raises:
            InvalidCredentials: unknown or unusable token, or the token's
                account no longer exists.
        """
        record = self.store.find_token_by_token(token)
        if record is None:
            logger.info("Unknown token %s", redact_token(token))
            raise InvalidCredentials("Token not found.")
        if not record.usable or (record.expires_at is not None and record.expires_at <= datetime.now(timezone.utc)):
            logger.info("Unusable token %s for account %s", redact_token(token), record.account_id)
            raise InvalidCredentials("Token is revoked, inactive or expired.")

        account = self.store.find_by_id(record.account_id)
        if account is None:
            logger.warning("Token %s references missing account %s", redact_token(token), record.account_id)
            raise InvalidCredentials("Token is not attached to an account.")
        return account

    def verify_token(self, token: str) -> TokenDetails:
        """Resolve a bearer token to its account and GitLab user in one call."""
        account = self.find_account_by_token(token)
        gitlab_user = self.resolve_external_user(token)
        return self.build_token_details(token, account, gitlab_user)


def _parse_expiry(value: str | None) -> datetime | None:
    """GitLab reports token expiry as a date ("2030-01-31"); treat it as midnight UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring unparseable token expiry %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
