"""
auth/tokens.py -- Random secrets, lookup keys, and the session cookie.

Security design decisions:
  Session ids and reset tokens: secrets.token_urlsafe(32) gives 256 bits of
       entropy -- guessing is computationally infeasible and no collision
       retry is needed.

  Lookup keys: the raw value is handed to the client once and never stored.
       The database holds HMAC-SHA256(SECRET_KEY, raw) instead. The hash is
       deterministic, so lookup stays an O(1) primary-key read, and an
       attacker holding a copy of the database cannot replay any row without
       also knowing SECRET_KEY. A slow KDF is unnecessary here: the inputs are
       high-entropy random values, not passwords.

  Temporary passwords: generated for admin-provisioned accounts and admin
       resets, returned exactly once, stored only as a password hash record.

  Cookie: httpOnly, samesite=lax, secure when SECURE_COOKIES=true, max_age
       equal to the session TTL so cookie and server-side row expire together.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

from core.config import Settings

_TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%&*"
TEMP_PASSWORD_LENGTH = 12


def generate_session_id() -> str:
    """Return a new 256-bit URL-safe session identifier."""
    return secrets.token_urlsafe(32)


def generate_reset_token() -> str:
    """Return a new 256-bit URL-safe password-reset token."""
    return secrets.token_urlsafe(32)


def generate_temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    """Return a random password drawn from letters, digits and a few symbols."""
    return "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))


def lookup_key(secret_key: str, raw: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a hex string.

    Used as the primary key of session and reset-token rows.
    """
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str, settings: Settings) -> None:
    """Write the session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    """
    response.set_cookie(
        settings.session_cookie_name,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_ttl_seconds,
    )


def clear_session_cookie(response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
