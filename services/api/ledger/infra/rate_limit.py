# Per-IP rate limiter shared by the app (default limit) and routers (@limiter.limit)
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..settings import settings

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])
