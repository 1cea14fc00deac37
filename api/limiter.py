"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules (to
apply per-route limits with @limiter.limit()).

A single shared instance means every route shares one in-memory counter
store. Instantiating it per module would give each module its own counters
and the limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current login limit, e.g. "10/minute". Read per request so tests can raise it."""
    return get_settings().login_rate_limit
