"""
api/limiter.py -- The one slowapi Limiter for the whole app.

api/main.py mounts it (SlowAPIMiddleware plus app.state.limiter) and the
route modules decorate handlers with it. Counters live in this instance's
memory storage, so a second Limiter elsewhere would count separately and
never trip.

[H2] Limits are keyed by client address. The limit strings come from
Settings (LOGIN_RATE_LIMIT, RESET_RATE_LIMIT); slowapi calls the provider
functions below on each request rather than at import.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def reset_limit() -> str:
    return get_settings().reset_rate_limit
