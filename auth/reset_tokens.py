"""
auth/reset_tokens.py -- Single-use password-reset grants.

issue() stores HMAC(SECRET_KEY, token) -> principal_id with an issue time.
redeem() spends a token and sets the new password in one transaction.

Single use under concurrency:
  Consumption is a conditional UPDATE

      UPDATE reset_tokens SET consumed_at = :now
       WHERE token_key = :key AND consumed_at IS NULL AND issued_at >= :cutoff

  and the rowcount decides the winner. Two requests racing with the same
  token both reach the UPDATE; the database serializes them on the row and
  the loser matches zero rows. There is no read-then-write window.

Expiry:
  A token older than ttl_seconds is dead even if never used. Expired and
  consumed rows stay in the table as an audit trail.

Low information:
  Unknown, consumed, expired, and orphaned tokens all raise the same
  InvalidToken. The new password is hashed before the token is looked up, so
  every path pays the KDF cost and response time says nothing either.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from auth.errors import InvalidToken
from auth.hashing import CredentialHasher
from auth.models import Principal, ResetToken
from auth.store import PrincipalStore, connect, principals, reset_tokens, transaction
from auth.tokens import generate_reset_token, lookup_key

logger = logging.getLogger("siteguard.auth.reset")

DEFAULT_RESET_TTL = 60 * 60


class ResetTokenRegistry:
    """Issue and redeem password-reset tokens.

    Usage:
        registry = ResetTokenRegistry(engine, principal_store, hasher, secret_key=settings.secret_key)
        token = registry.issue(principal.id)
        registry.redeem(token, "newpass456")   # -> Principal
        registry.redeem(token, "again")        # raises InvalidToken
    """

    def __init__(
        self,
        engine: Engine,
        principals: PrincipalStore,
        hasher: CredentialHasher,
        secret_key: str,
        ttl_seconds: int = DEFAULT_RESET_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.principals = principals
        self.hasher = hasher
        self.ttl_seconds = ttl_seconds
        self._secret_key = secret_key
        self._clock = clock

    def _key(self, token: str) -> str:
        return lookup_key(self._secret_key, token)

    def issue(self, principal_id: str) -> str:
        """Store a new token for principal_id and return the raw token."""
        token = generate_reset_token()
        with connect(self.engine) as conn:
            conn.execute(
                reset_tokens.insert().values(
                    token_key=self._key(token),
                    principal_id=principal_id,
                    issued_at=self._clock(),
                    consumed_at=None,
                )
            )
            conn.commit()
        logger.info("Password reset token issued for principal %s", principal_id)
        return token

    def get(self, token: str) -> ResetToken | None:
        """Return the stored record for a raw token, consumed or not. Audit helper."""
        if not token:
            return None
        with connect(self.engine) as conn:
            row = conn.execute(reset_tokens.select().where(reset_tokens.c.token_key == self._key(token))).fetchone()
        if row is None:
            return None
        return ResetToken(
            token_key=row.token_key,
            principal_id=row.principal_id,
            issued_at=row.issued_at,
            consumed_at=row.consumed_at,
        )

    def redeem(self, token: str, new_password: str) -> Principal:
        """Spend token and set new_password on its principal.

        Raises InvalidToken if the token is unknown, already consumed,
        expired, or bound to an account that no longer exists. On any of
        those the transaction rolls back and nothing changes.
        """
        new_hash = self.hasher.hash(new_password)
        if not token:
            raise InvalidToken()
        key = self._key(token)
        now = self._clock()
        cutoff = now - self.ttl_seconds

        with transaction(self.engine) as conn:
            principal_id = conn.execute(
                select(reset_tokens.c.principal_id).where(reset_tokens.c.token_key == key)
            ).scalar()
            if principal_id is None:
                raise InvalidToken()

            consumed = conn.execute(
                reset_tokens.update()
                .where(
                    and_(
                        reset_tokens.c.token_key == key,
                        reset_tokens.c.consumed_at.is_(None),
                        reset_tokens.c.issued_at >= cutoff,
                    )
                )
                .values(consumed_at=now)
            )
            if consumed.rowcount != 1:
                raise InvalidToken()

            updated = conn.execute(
                principals.update()
                .where(principals.c.id == principal_id)
                .values(password_hash=new_hash, updated_at=datetime.now(timezone.utc).isoformat())
            )
            if updated.rowcount != 1:
                # Orphaned token: the account is gone. Roll back so the row
                # is left exactly as it was.
                raise InvalidToken()

        principal = self.principals.get_by_id(principal_id)
        if principal is None:
            raise InvalidToken()
        logger.info("Password reset token redeemed for principal %s", principal_id)
        return principal
