import logging
import time

from fastapi import APIRouter
from redis.exceptions import RedisError

from ..infra.redis_client import get_redis

router = APIRouter()
logger = logging.getLogger("ledger.ready")

_started = time.monotonic()


@router.get("/health")
def health():
    return {"ok": True, "uptime": time.monotonic() - _started}


@router.get("/ready")
async def ready():
    redis_ok = False
    try:
        r = await get_redis()
        await r.ping()
        redis_ok = True
    except (RedisError, OSError) as e:
        logger.warning(f"Redis not ready: {e}")
    return {"ok": True, "redis_ok": redis_ok}
