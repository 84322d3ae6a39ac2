"""
auth/authenticator.py -- Registration, login, logout, password reset, profile
edits, and account administration.

The Authenticator is the only component that creates Principals from raw
input. It composes the hasher, the principal store, the session store, the
reset-token registry, and the reset notifier; it is built once per process
(see from_settings) and handed to request handlers through app.state.

Login state machine (per attempt):

    Unauthenticated -> credential lookup -> Rejected(InvalidCredentials)
                                         -> Verified -> SessionCreated

Nothing in between is observable. Unknown email and wrong password raise
the same InvalidCredentials, and the unknown-email path still runs a full
verification against a throwaway record so both take the same time [C1].

Blocking work:
  Every method here may run the Argon2id KDF and is therefore synchronous.
  Route handlers that call it are plain `def` functions, which FastAPI runs in
  its worker threadpool, keeping the event loop free for other requests.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from auth.errors import DuplicateEmail, InvalidCredentials, PolicyViolation, PrincipalNotFound
from auth.guard import require_authenticated, require_role
from auth.hashing import CredentialHasher
from auth.models import Principal, Role
from auth.notifier import LoggingResetNotifier, ResetNotifier
from auth.reset_tokens import ResetTokenRegistry
from auth.sessions import SessionStore
from auth.store import PrincipalStore, create_auth_engine, new_principal_id
from auth.tokens import generate_temporary_password
from core.config import Settings

logger = logging.getLogger("siteguard.auth")


class Authenticator:
    """Orchestrates the authentication flows.

    Usage:
        authenticator = Authenticator.from_settings(get_settings())
        principal, sid = authenticator.register("alice@example.com", "correcthorse123")
        principal, sid = authenticator.login("alice@example.com", "correcthorse123")
        authenticator.logout(sid)
        authenticator.close()
    """

    def __init__(
        self,
        principals: PrincipalStore,
        sessions: SessionStore,
        resets: ResetTokenRegistry,
        hasher: CredentialHasher,
        notifier: ResetNotifier | None = None,
        engine: Engine | None = None,
    ) -> None:
        self.principals = principals
        self.sessions = sessions
        self.resets = resets
        self.hasher = hasher
        self.notifier: ResetNotifier = notifier or LoggingResetNotifier()
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings, notifier: ResetNotifier | None = None) -> Authenticator:
        """Build the whole object graph on one engine from Settings."""
        engine = create_auth_engine(settings.database_url)
        hasher = CredentialHasher.from_settings(settings)
        principals = PrincipalStore(engine)
        sessions = SessionStore(
            engine,
            principals,
            secret_key=settings.secret_key,
            ttl_seconds=settings.session_ttl_seconds,
        )
        resets = ResetTokenRegistry(
            engine,
            principals,
            hasher,
            secret_key=settings.secret_key,
            ttl_seconds=settings.reset_token_ttl_seconds,
        )
        return cls(principals, sessions, resets, hasher, notifier=notifier, engine=engine)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    # ------------------------------------------------------------------
    # Registration / login / logout
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> tuple[Principal, str]:
        """Create a role=user account and log it in. Returns (principal, session_id).

        Raises DuplicateEmail if the address is taken in any letter case.
        """
        if self.principals.get_by_email(email) is not None:
            raise DuplicateEmail()
        principal = self.principals.create(
            Principal(
                id=new_principal_id(),
                email=email,
                role=Role.user,
                password_hash=self.hasher.hash(password),
                first_name=first_name,
                last_name=last_name,
            )
        )
        session_id = self.sessions.create(principal.id)
        logger.info("Registered principal %s", principal.id)
        return principal, session_id

    def login(self, email: str, password: str) -> tuple[Principal, str]:
        """Verify credentials and open a session. Returns (principal, session_id).

        Raises InvalidCredentials for an unknown email, an account without a
        password, and a wrong password alike.
        """
        principal = self.principals.get_by_email(email)
        if principal is None or principal.password_hash is None:
            # Equalize timing -- do NOT return before running the KDF [C1]
            self.hasher.burn(password)
            logger.info("Rejected login attempt")
            raise InvalidCredentials()
        if not self.hasher.verify(password, principal.password_hash):
            logger.info("Rejected login attempt for principal %s", principal.id)
            raise InvalidCredentials()

        if self.hasher.needs_rehash(principal.password_hash):
            self.principals.update_password_hash(principal.id, self.hasher.hash(password))
            logger.info("Upgraded password hash for principal %s", principal.id)
        self.principals.update_last_login(principal.id)
        session_id = self.sessions.create(principal.id)
        # Re-read so the caller sees this login's timestamp and any upgraded hash.
        principal = self.principals.get_by_id(principal.id) or principal
        return principal, session_id

    def logout(self, session_id: str | None) -> None:
        """End a session. Always succeeds from the caller's point of view."""
        self.sessions.destroy(session_id)

    def current_principal(self, session_id: str | None) -> Principal | None:
        return self.sessions.resolve(session_id)

    # ------------------------------------------------------------------
    # Password reset / change
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str | None:
        """Issue a reset token for email and pass it to the notifier.

        Returns the token, or None when no such account exists. The HTTP layer
        answers both cases with the same acknowledgement; whether the token is
        included is a configuration decision made there.
        """
        principal = self.principals.get_by_email(email)
        if principal is None:
            logger.info("Password reset requested for unknown email; nothing issued")
            return None
        token = self.resets.issue(principal.id)
        self.notifier.send_reset(principal, token)
        return token

    def confirm_password_reset(self, token: str, new_password: str) -> Principal:
        """Redeem token, set new_password, and log the account out everywhere.

        Raises InvalidToken (see ResetTokenRegistry.redeem).
        """
        principal = self.resets.redeem(token, new_password)
        revoked = self.sessions.destroy_all_for(principal.id)
        logger.info("Password reset completed for principal %s (%d sessions revoked)", principal.id, revoked)
        return principal

    def change_password(
        self,
        principal: Principal,
        current_password: str,
        new_password: str,
        keep_session: str | None = None,
    ) -> None:
        """Change the caller's own password after re-checking the current one.

        Every other session of the account is revoked; keep_session (the
        caller's own) stays valid.
        """
        if not self.hasher.verify(current_password, principal.password_hash):
            raise InvalidCredentials("Current password is incorrect.")
        self.principals.update_password_hash(principal.id, self.hasher.hash(new_password))
        revoked = self.sessions.destroy_all_for(principal.id, keep=keep_session)
        logger.info("Password changed for principal %s (%d other sessions revoked)", principal.id, revoked)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_own_profile(self, principal: Principal | None, changes: dict[str, str | None]) -> Principal:
        """Let an account holder edit their own first and last name.

        changes maps profile fields to new values; a None value clears the
        field and an absent key keeps it. Email and role are not editable here.
        """
        principal = require_authenticated(principal)
        return self._apply_profile(principal.id, changes)

    def _apply_profile(self, principal_id: str, changes: dict[str, str | None]) -> Principal:
        if changes and not self.principals.update_profile(principal_id, changes):
            raise PrincipalNotFound()
        updated = self.principals.get_by_id(principal_id)
        if updated is None:
            raise PrincipalNotFound()
        if changes:
            logger.info("Profile of principal %s updated (%s)", principal_id, ", ".join(sorted(changes)))
        return updated

    # ------------------------------------------------------------------
    # Administration (admin only)
    # ------------------------------------------------------------------

    def list_principals(self, actor: Principal | None) -> list[Principal]:
        require_role(actor, Role.admin)
        return self.principals.list_principals()

    def provision(
        self,
        actor: Principal | None,
        email: str,
        role: Role = Role.user,
        first_name: str | None = None,
        last_name: str | None = None,
        password: str | None = None,
    ) -> tuple[Principal, str | None]:
        """Create an account on behalf of an admin.

        When password is None a temporary password is generated and returned
        once, for the admin to pass on; only its hash is stored. Returns
        (principal, temporary_password_or_None).
        """
        actor = require_role(actor, Role.admin)
        temporary = None
        if password is None:
            temporary = password = generate_temporary_password()
        principal = self.principals.create(
            Principal(
                id=new_principal_id(),
                email=email,
                role=Role(role),
                password_hash=self.hasher.hash(password),
                first_name=first_name,
                last_name=last_name,
            )
        )
        logger.info("Principal %s provisioned by %s with role %s", principal.id, actor.id, principal.role.value)
        return principal, temporary

    def change_role(self, actor: Principal | None, principal_id: str, role: Role) -> Principal:
        """Set a new role on an account.

        [M4] An admin cannot change their own role, so there is always at
        least one admin able to undo a mistake.
        """
        actor = require_role(actor, Role.admin)
        target = self.principals.get_by_id(principal_id)
        if target is None:
            raise PrincipalNotFound()
        role = Role(role)
        if target.id == actor.id and role != target.role:
            raise PolicyViolation("You cannot change your own role.")
        if role != target.role:
            self.principals.update_role(target.id, role)
            logger.warning(
                "Role of principal %s changed from %s to %s by %s",
                target.id,
                target.role.value,
                role.value,
                actor.id,
            )
        updated = self.principals.get_by_id(target.id)
        if updated is None:
            raise PrincipalNotFound()
        return updated

    def update_principal(
        self,
        actor: Principal | None,
        principal_id: str,
        role: Role | None = None,
        profile: dict[str, str | None] | None = None,
    ) -> Principal:
        """Apply an admin edit: a new role, new profile names, or both.

        The role change runs first, so a refused self role change leaves the
        profile untouched too.
        """
        actor = require_role(actor, Role.admin)
        if role is not None:
            self.change_role(actor, principal_id, role)
        return self._apply_profile(principal_id, profile or {})

    def admin_reset_password(self, actor: Principal | None, principal_id: str) -> tuple[Principal, str]:
        """Replace an account's password with a generated one and revoke its sessions.

        Returns (principal, temporary_password). The temporary password is
        shown once; delivery to the account holder is outside this core.
        """
        actor = require_role(actor, Role.admin)
        target = self.principals.get_by_id(principal_id)
        if target is None:
            raise PrincipalNotFound()
        temporary = generate_temporary_password()
        self.principals.update_password_hash(target.id, self.hasher.hash(temporary))
        self.sessions.destroy_all_for(target.id)
        logger.warning("Password of principal %s reset by admin %s", target.id, actor.id)
        return target, temporary

    def create_admin(self, email: str, password: str) -> Principal:
        """Create an admin account without an acting admin. Operator CLI only.

        Raises DuplicateEmail if the address is taken.
        """
        principal = self.principals.create(
            Principal(
                id=new_principal_id(),
                email=email,
                role=Role.admin,
                password_hash=self.hasher.hash(password),
            )
        )
        logger.warning("Admin principal %s created from the command line", principal.id)
        return principal
