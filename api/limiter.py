"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and by api/routes/v1/auth.py
(to apply the login limit with @limiter.limit()).

One shared instance means one in-memory counter store. A limiter created per
module would count separately and the login limit would never trigger.

Counters are keyed by client address. The login limit itself comes from
Settings.login_rate_limit so deployments can tune it without a code change.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_LIMIT = get_settings().login_rate_limit
