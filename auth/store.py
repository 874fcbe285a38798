"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, persons and tokens.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account / _row_to_token are the
mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  username and email are UNIQUE at the SQL level, as is the token string.
  create_identity() writes person, account and first token inside a single
  engine.begin() block: either all three rows commit or none do. A UNIQUE
  violation surfaces as sqlalchemy.exc.IntegrityError for the caller to map.

  account_tokens.account_id is deliberately not a FOREIGN KEY (SQLite does not
  enforce them without a per-connection PRAGMA anyway). A token whose account
  has gone away is a "dangling" token; AuthService.find_account_by_token()
  treats it as invalid credentials.

Timestamps are stored as ISO 8601 TEXT in UTC and mapped to aware datetimes.

Layer rule: no imports from api/ or gitlab_api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account, AccountToken, Person
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_persons = Table(
    "persons",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("slug", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("person_id", String(36), nullable=False),
    Column("gitlab_id", Integer),  # GitLab user id
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
)

_account_tokens = Table(
    "account_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("token", String(255), nullable=False, unique=True),
    Column("gitlab_id", Integer),  # GitLab impersonation token id
    Column("active", Integer, nullable=False, server_default="1"),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("expires_at", String(32)),  # NULL = never expires
    Column("created_at", String(32), nullable=False),
)

_account_select = select(
    _accounts,
    _persons.c.slug.label("person_slug"),
    _persons.c.name.label("person_name"),
).select_from(_accounts.join(_persons, _accounts.c.person_id == _persons.c.id))


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Person and AccountToken entities.

    Usage:
        store = AccountStore()
        store.create_identity(person, account, token)
        account = store.find_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().auth_db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_account_select.where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email address."""
        with self.engine.connect() as conn:
            row = conn.execute(_account_select.where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_account_select.where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def count_accounts(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return result or 0

    def update_last_login(self, account_id: str, when: datetime) -> bool:
        """Stamp last_login on an account. Returns False if account_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(last_login=_to_iso(when))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def create_identity(self, person: Person, account: Account, token: AccountToken) -> None:
        """Persist a new person, its account and the account's first token atomically.

        engine.begin() commits on normal exit and rolls back if any insert
        raises, so a UNIQUE violation on the account leaves no orphan person.

        Raises sqlalchemy.exc.IntegrityError if the username, email, person
        slug or token already exists.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _persons.insert().values(id=person.id, slug=person.slug, name=person.name, created_at=now)
            )
            conn.execute(
                _accounts.insert().values(
                    id=account.id,
                    username=account.username,
                    email=account.email,
                    password_hash=account.password_hash,
                    person_id=person.id,
                    gitlab_id=account.gitlab_id,
                    last_login=_to_iso(account.last_login),
                    created_at=now,
                )
            )
            conn.execute(_token_insert(token, now))

    # ------------------------------------------------------------------
    # Token queries
    # ------------------------------------------------------------------

    def create_token(self, token: AccountToken) -> None:
        """Insert an additional token for an existing account."""
        with self.engine.connect() as conn:
            conn.execute(_token_insert(token, _now_iso()))
            conn.commit()

    def find_tokens_by_account_id(self, account_id: str) -> list[AccountToken]:
        """Return every token of an account, usable or not, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _account_tokens.select()
                .where(_account_tokens.c.account_id == account_id)
                .order_by(_account_tokens.c.created_at)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def find_token_by_token(self, token: str) -> AccountToken | None:
        """Look up a token record by its secret value. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_account_tokens.select().where(_account_tokens.c.token == token)).fetchone()
        return _row_to_token(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _token_insert(token: AccountToken, now: str):
    return _account_tokens.insert().values(
        id=token.id,
        account_id=token.account_id,
        token=token.token,
        gitlab_id=token.gitlab_id,
        active=1 if token.active else 0,
        revoked=1 if token.revoked else 0,
        expires_at=_to_iso(token.expires_at),
        created_at=_to_iso(token.created_at) or now,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        person=Person(id=row.person_id, slug=row.person_slug, name=row.person_name),
        gitlab_id=row.gitlab_id,
        last_login=_from_iso(row.last_login),
        created_at=_from_iso(row.created_at),
    )


def _row_to_token(row) -> AccountToken:
    return AccountToken(
        id=row.id,
        account_id=row.account_id,
        token=row.token,
        gitlab_id=row.gitlab_id,
        active=bool(row.active),
        revoked=bool(row.revoked),
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
    )
