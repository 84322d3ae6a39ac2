"""
auth/guard.py -- Authorization decisions.

Pure functions over an already-resolved Principal (or None). They return the
principal on success and raise on failure, so a caller can write

    principal = require_role(principal, Role.manager)

and know that everything after that line runs only for managers and above.
No I/O, no side effects. The FastAPI dependencies in auth/dependencies.py
resolve the session and then delegate here.

Roles are compared by rank (user < manager < admin), never by membership in
an allow-list, so granting a higher role never loses access.
"""

from __future__ import annotations

from auth.errors import Forbidden, Unauthenticated
from auth.models import Principal, Role


def require_authenticated(principal: Principal | None) -> Principal:
    """Raise Unauthenticated if no principal was resolved for the request."""
    if principal is None:
        raise Unauthenticated()
    return principal


def require_role(principal: Principal | None, min_role: Role) -> Principal:
    """Raise Unauthenticated if principal is None, Forbidden if it ranks below min_role."""
    principal = require_authenticated(principal)
    if not Role(principal.role).at_least(Role(min_role)):
        raise Forbidden()
    return principal
