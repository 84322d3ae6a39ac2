"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Dataclasses own domain shape;
stores and the Authenticator do the work. The one piece of behaviour here is
Role.rank, because the role order is part of the role's definition.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Account role. Declaration order is privilege order: user < manager < admin.

    Authorization compares ranks, never set membership, so a role added above
    admin automatically passes every existing admin gate.
    """

    user = "user"
    manager = "manager"
    admin = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)

    def at_least(self, other: Role) -> bool:
        return self.rank >= other.rank


_ROLE_ORDER: tuple[Role, ...] = (Role.user, Role.manager, Role.admin)

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is the mail collaborator's problem, not the validator's.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


@dataclass
class Principal:
    """An account that can authenticate and be authorized.

    email is stored as entered; the store enforces uniqueness on its
    lowercased form. password_hash is None for provisioned accounts that
    have not set a password yet -- they cannot log in until they do.

    password_hash must never leave the process: API responses are built
    from explicit fields, not from asdict(principal).
    """

    id: str
    email: str
    role: Role = Role.user
    password_hash: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """Server-side session record.

    session_key is HMAC-SHA256(SECRET_KEY, session_id). The raw session_id
    is handed to the client once and never persisted. Timestamps are epoch
    seconds so expiry checks are plain float comparisons in SQL.
    """

    session_key: str
    principal_id: str
    created_at: float
    expires_at: float


@dataclass
class ResetToken:
    """A single-use password-reset grant.

    token_key is HMAC-SHA256(SECRET_KEY, token). consumed_at stays NULL until
    the token is redeemed; consumed rows are kept for audit, not deleted.
    """

    token_key: str
    principal_id: str
    issued_at: float
    consumed_at: float | None = None
