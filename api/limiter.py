"""
api/limiter.py -- Shared slowapi rate limiter for the login and register routes.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies the
per-route limits with @limiter.limit().

One shared instance, so every route counts against the same store. The store
defaults to in-process memory; point RATE_LIMIT_STORAGE_URI at redis:// when
running more than one worker, otherwise each worker counts on its own.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)
