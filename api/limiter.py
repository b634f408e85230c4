"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

One instance owns one counter store; api/main.py attaches it to app.state so
its lifetime is the app's. Separate instances per module would each count in
isolation and the limits would never trigger.

RATE_LIMIT_ENABLED=false turns every limit into a no-op (used by the tests,
which log in many times from the same client address).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)

LOGIN_RATE_LIMIT = _settings.login_rate_limit
