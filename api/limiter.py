"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to limit the login endpoints with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. A limiter per module would keep isolated counters, and the login
limit would never trigger across workers of the same process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
