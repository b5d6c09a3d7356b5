"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware; route modules apply per-route limits
with @limiter.limit(). All routes must share this one instance so they count
against the same in-memory store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
