"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and api/routes/v1/auth.py
(per-route limits with @limiter.limit()). A single shared instance means all
routes share one in-memory counter store; per-module instances would each
count separately and never trigger.

Counters live in process memory, so limits apply per worker process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
