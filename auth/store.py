"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
PrincipalStore is the repository for accounts; _row_to_principal is the mapper.
SessionStore (auth/sessions.py) and ResetTokenRegistry (auth/reset_tokens.py)
share the schema and the engine defined here. Route and dependency code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is case-insensitive: email_lower carries a UNIQUE index and
  every lookup goes through it. The email column keeps the address as entered
  for display.

  Session and reset-token rows are keyed by HMAC-SHA256(SECRET_KEY, raw), never
  by the raw value (see auth/tokens.py).

Failure translation:
  Connection-level database errors (OperationalError, InterfaceError, pool
  TimeoutError) become StorageUnavailable at this boundary -- the only error
  kind callers may retry. IntegrityError passes through untouched so
  repositories can map it to a domain error (e.g. DuplicateEmail).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import DuplicateEmail, StorageUnavailable
from auth.models import Principal, Role

logger = logging.getLogger("siteguard.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

principals = Table(
    "principals",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("email_lower", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL = provisioned, no password set yet
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

sessions = Table(
    "sessions",
    metadata,
    Column("session_key", String(64), primary_key=True),  # HMAC-SHA256 hex
    # Weak reference: a session never owns its principal. A dangling id
    # resolves to "unauthenticated", so no FOREIGN KEY is declared.
    Column("principal_id", String(64), nullable=False, index=True),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)

reset_tokens = Table(
    "reset_tokens",
    metadata,
    Column("token_key", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("principal_id", String(64), ForeignKey("principals.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("issued_at", Float, nullable=False),
    Column("consumed_at", Float),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create the engine for the auth database and make sure all tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    with storage_errors():
        metadata.create_all(engine)
    return engine


_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError)


@contextmanager
def storage_errors() -> Iterator[None]:
    """Translate connection-level database failures into StorageUnavailable."""
    try:
        yield
    except _UNAVAILABLE as exc:
        logger.error("Auth store unavailable: %s", exc.__class__.__name__)
        raise StorageUnavailable() from exc


@contextmanager
def connect(engine: Engine) -> Iterator[Connection]:
    """engine.connect() with failure translation. Callers commit explicitly."""
    with storage_errors(), engine.connect() as conn:
        yield conn


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """engine.begin() with failure translation. Commits on exit, rolls back on error."""
    with storage_errors(), engine.begin() as conn:
        yield conn


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_principal_id() -> str:
    """Opaque, immutable account id: usr_<24 hex chars>."""
    return f"usr_{secrets.token_hex(12)}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


# Columns an account holder or an admin may edit after creation.
PROFILE_FIELDS = ("first_name", "last_name")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal entities.

    Usage:
        engine = create_auth_engine("sqlite:///auth.db")
        store = PrincipalStore(engine)
        store.create(Principal(id=new_principal_id(), email="a@example.com", password_hash=...))
        principal = store.get_by_email("A@Example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_principals(self) -> bool:
        """Return True if at least one account exists."""
        with connect(self.engine) as conn:
            result = conn.execute(select(func.count()).select_from(principals)).scalar()
        return (result or 0) > 0

    def get_by_id(self, principal_id: str) -> Principal | None:
        """Look up an account by id. Returns None if not found."""
        with connect(self.engine) as conn:
            row = conn.execute(principals.select().where(principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_email(self, email: str) -> Principal | None:
        """Look up an account by email, case-insensitively. Returns None if not found."""
        with connect(self.engine) as conn:
            row = conn.execute(
                principals.select().where(principals.c.email_lower == normalize_email(email))
            ).fetchone()
        return _row_to_principal(row) if row is not None else None

    def list_principals(self) -> list[Principal]:
        """Return all accounts ordered by email. Admin-only operation."""
        with connect(self.engine) as conn:
            rows = conn.execute(principals.select().order_by(principals.c.email_lower)).fetchall()
        return [_row_to_principal(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, principal: Principal) -> Principal:
        """Insert a new account and return it as stored.

        Raises DuplicateEmail if the lowercased email is already taken. The
        UNIQUE index is the final arbiter, so two concurrent registrations
        for the same address cannot both succeed.
        """
        now = _now_iso()
        try:
            with connect(self.engine) as conn:
                conn.execute(
                    principals.insert().values(
                        id=principal.id,
                        email=principal.email.strip(),
                        email_lower=normalize_email(principal.email),
                        password_hash=principal.password_hash,
                        role=Role(principal.role).value,
                        first_name=principal.first_name,
                        last_name=principal.last_name,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        created = self.get_by_id(principal.id)
        if created is None:
            raise StorageUnavailable("Account was not readable after write.")
        return created

    def update_password_hash(self, principal_id: str, password_hash: str) -> bool:
        """Replace the stored hash. Returns False if the account does not exist."""
        with connect(self.engine) as conn:
            result = conn.execute(
                principals.update()
                .where(principals.c.id == principal_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_role(self, principal_id: str, role: Role) -> bool:
        """Change an account's role. Returns False if the account does not exist.

        The store does not check who is asking -- the Authenticator enforces
        that only admins reach this method.
        """
        with connect(self.engine) as conn:
            result = conn.execute(
                principals.update()
                .where(principals.c.id == principal_id)
                .values(role=Role(role).value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, principal_id: str, changes: dict[str, str | None]) -> bool:
        """Write first_name/last_name from changes; absent keys are left alone.

        Returns False if the account does not exist. Keys other than the
        profile columns raise ValueError.
        """
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Not a profile field: {', '.join(sorted(unknown))}")
        with connect(self.engine) as conn:
            result = conn.execute(
                principals.update()
                .where(principals.c.id == principal_id)
                .values(**changes, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, principal_id: str) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with connect(self.engine) as conn:
            conn.execute(principals.update().where(principals.c.id == principal_id).values(last_login=_now_iso()))
            conn.commit()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        role=Role(row.role),
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
