"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and by api/routes/v1/auth.py
(per-route @limiter.limit() on login and register).

One shared instance means one in-memory counter store. Separate instances per
module would each count on their own and limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_RATE_LIMIT = get_settings().login_rate_limit
