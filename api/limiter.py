"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, exposed as app.state.limiter)
and by api/routes/v1/auth.py (per-route limits on register and login via
@limiter.limit()).

One shared instance means every route counts against the same in-memory
store. A limiter per module would keep isolated counters and never trip.
Limits are keyed by client address; behind a proxy, run uvicorn with
--proxy-headers so the address is the real client.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
