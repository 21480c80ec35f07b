"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/auth.py (to apply the login limit with @limiter.limit()).

A single shared instance means all routes share one in-memory counter
store. RATE_LIMIT_ENABLED=false turns every limit into a no-op (the test
suite does this so repeated logins are not throttled).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.default_rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
