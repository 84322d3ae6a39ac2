"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session id is read from, in priority order:
  1. The session cookie (name from Settings.session_cookie_name) -- set by
     register/login for browser clients.
  2. Authorization: Bearer <session_id> -- API clients that keep the id
     returned in the login response body.

try_get_current_principal() is the soft variant (returns None on failure).
get_current_principal() raises Unauthenticated.
authorize(min_role) returns a dependency that raises Unauthenticated or
Forbidden; every protected business route declares one.

Failures are raised as auth.errors exceptions and turned into responses by
the handler registered in api/main.py, so a failed check always stops the
request before the route body runs.

The Authenticator and Settings are taken from app.state, where the lifespan
placed them -- nothing here reaches for a module-level global.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.authenticator import Authenticator
from auth.guard import require_authenticated, require_role
from auth.models import Principal, Role
from core.config import Settings


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def session_id_from_request(request: Request) -> str | None:
    """Return the raw session id carried by the request, or None."""
    settings: Settings = request.app.state.settings
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            session_id = auth_header[7:].strip()
    return session_id or None


def try_get_current_principal(request: Request) -> Principal | None:
    """Resolve the request's session to a Principal, or None. Never raises for auth reasons.

    The result is memoized on request.state so stacked dependencies resolve
    the session once per request.
    """
    if hasattr(request.state, "principal"):
        return request.state.principal
    authenticator = get_authenticator(request)
    principal = authenticator.current_principal(session_id_from_request(request))
    request.state.principal = principal
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    return require_authenticated(try_get_current_principal(request))


def authorize(min_role: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits principals ranked at least min_role.

    Use as a FastAPI dependency:
        @router.delete("/projects/{id}")
        def route(principal: Principal = Depends(authorize(Role.manager))): ...
    """

    def dependency(request: Request) -> Principal:
        return require_role(try_get_current_principal(request), min_role)

    dependency.__name__ = f"authorize_{Role(min_role).value}"
    return dependency


require_manager = authorize(Role.manager)
require_admin = authorize(Role.admin)
