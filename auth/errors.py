"""
auth/errors.py -- Error kinds raised by the authentication core.

Every failure the core can report is an AuthError subclass carrying a stable
machine-readable code, a generic human message, and the HTTP status the API
layer should use. The API maps them to the shared ErrorResponse envelope in
one exception handler; route code never builds these responses by hand.

InvalidCredentials and InvalidToken are deliberately low-information: the
same instance shape is raised for "not found" and "wrong secret" so callers
cannot enumerate accounts or tokens.

StorageUnavailable is the only retryable kind. Everything else is terminal
for the current request.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication and authorization failures."""

    code: str = "auth_error"
    message: str = "Request could not be authorized."
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    message = "An account with that email already exists."
    status_code = 409


class Unauthenticated(AuthError):
    code = "unauthenticated"
    message = "Authentication required."
    status_code = 401


class Forbidden(AuthError):
    code = "forbidden"
    message = "You do not have permission to perform this action."
    status_code = 403


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid or expired reset token."
    status_code = 400


class StorageUnavailable(AuthError):
    """The backing store could not be reached. Safe for the caller to retry."""

    code = "storage_unavailable"
    message = "Service temporarily unavailable. Please retry."
    status_code = 503
    retryable = True


# ---------------------------------------------------------------------------
# Administrative operations
# ---------------------------------------------------------------------------


class PrincipalNotFound(AuthError):
    """Raised only on admin-gated paths, where revealing existence is acceptable."""

    code = "not_found"
    message = "User not found."
    status_code = 404


class PolicyViolation(AuthError):
    """The change is well-formed but would break an account invariant [M4]."""

    code = "policy_violation"
    message = "The requested change is not allowed."
    status_code = 400
