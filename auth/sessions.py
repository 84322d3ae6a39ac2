"""
auth/sessions.py -- Server-side session store.

Maps an opaque session id to a principal id with a fixed expiry. The store
owns only that mapping; the Principal itself is loaded from PrincipalStore on
every resolve, so role changes and password resets take effect on the next
request instead of living on inside a serialized copy of the user.

Expiry:
  expires_at = created_at + ttl, fixed at creation (no sliding renewal).
  resolve() treats now > expires_at as absent and deletes the row on the
  spot (lazy eviction). purge_expired() is the optional bulk sweep run by the
  API's background task; correctness never depends on it having run.

Concurrency:
  Every method is a single statement against the backing store. Concurrent
  resolves are plain reads; create/destroy touch one primary key each.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlalchemy import and_
from sqlalchemy.engine import Engine

from auth.models import Principal, Session
from auth.store import PrincipalStore, connect, sessions
from auth.tokens import generate_session_id, lookup_key

logger = logging.getLogger("siteguard.auth.sessions")

DEFAULT_SESSION_TTL = 7 * 24 * 60 * 60


class SessionStore:
    """Repository for Session records.

    Usage:
        sessions = SessionStore(engine, principal_store, secret_key=settings.secret_key)
        sid = sessions.create(principal.id)
        sessions.resolve(sid)     # -> Principal
        sessions.destroy(sid)
        sessions.resolve(sid)     # -> None
    """

    def __init__(
        self,
        engine: Engine,
        principals: PrincipalStore,
        secret_key: str,
        ttl_seconds: int = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.principals = principals
        self.ttl_seconds = ttl_seconds
        self._secret_key = secret_key
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return lookup_key(self._secret_key, session_id)

    def create(self, principal_id: str) -> str:
        """Persist a new session for principal_id and return the raw session id."""
        session_id = generate_session_id()
        now = self._clock()
        with connect(self.engine) as conn:
            conn.execute(
                sessions.insert().values(
                    session_key=self._key(session_id),
                    principal_id=principal_id,
                    created_at=now,
                    expires_at=now + self.ttl_seconds,
                )
            )
            conn.commit()
        return session_id

    def get(self, session_id: str) -> Session | None:
        """Return the live Session record, or None if absent or expired.

        An expired row is deleted before returning None.
        """
        if not session_id:
            return None
        key = self._key(session_id)
        with connect(self.engine) as conn:
            row = conn.execute(sessions.select().where(sessions.c.session_key == key)).fetchone()
            if row is None:
                return None
            now = self._clock()
            if now > row.expires_at:
                conn.execute(sessions.delete().where(and_(sessions.c.session_key == key, sessions.c.expires_at < now)))
                conn.commit()
                return None
        return Session(
            session_key=row.session_key,
            principal_id=row.principal_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    def resolve(self, session_id: str | None) -> Principal | None:
        """Return the Principal behind a session id, or None.

        Fails closed: a missing, expired, or dangling session all resolve to
        None, and the caller treats the request as unauthenticated.
        """
        if not session_id:
            return None
        record = self.get(session_id)
        if record is None:
            return None
        principal = self.principals.get_by_id(record.principal_id)
        if principal is None:
            logger.info("Session references missing principal %s; treating as unauthenticated", record.principal_id)
        return principal

    def destroy(self, session_id: str | None) -> None:
        """Delete a session. Destroying an unknown session is not an error."""
        if not session_id:
            return
        with connect(self.engine) as conn:
            conn.execute(sessions.delete().where(sessions.c.session_key == self._key(session_id)))
            conn.commit()

    def destroy_all_for(self, principal_id: str, keep: str | None = None) -> int:
        """Delete every session of a principal, optionally sparing one.

        Used after a password change or reset so a stolen session cannot
        outlive the credential it was opened with. keep is the raw id of the
        session making the change, which stays valid.
        """
        condition = sessions.c.principal_id == principal_id
        if keep:
            condition = and_(condition, sessions.c.session_key != self._key(keep))
        with connect(self.engine) as conn:
            result = conn.execute(sessions.delete().where(condition))
            conn.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with connect(self.engine) as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at < self._clock()))
            conn.commit()
        return result.rowcount
