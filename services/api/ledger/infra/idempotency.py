"""Idempotency-Key replay cache for the review endpoints.

Optional: requests without the header run normally. With it, the first
completed response is cached and replayed for identical retries. Exactly-once
application of a change set does not depend on this; the store's conditional
update does that.
"""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse

from ..errors import Conflict
from .redis_client import get_redis

logger = logging.getLogger("ledger.idempotency")

DONE_TTL_SEC = 60 * 60 * 24
PROCESSING_TTL_SEC = 60


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_request(method: str, path: str, body_bytes: bytes) -> str:
    h = hashlib.sha256()
    h.update(method.encode("utf-8"))
    h.update(b"|")
    h.update(path.encode("utf-8"))
    h.update(b"|")
    h.update(body_bytes or b"")
    return h.hexdigest()


def _idemp_redis_key(scope: str, route_key: str, idem_key: str) -> str:
    return f"ledger:idemp:{scope}:{route_key}:{idem_key}"


async def idempotency_precheck(
    request: Request, *, scope: str, route_key: str
) -> Union[None, tuple[str, str], JSONResponse]:
    """Return None when no Idempotency-Key was sent (proceed uncached),
    (redis_key, request_hash) when the caller should proceed and store the result,
    or a JSONResponse replaying a previously stored result."""
    idem_key = request.headers.get("Idempotency-Key")
    if not idem_key:
        return None

    body_bytes = await request.body()
    req_hash = _hash_request(request.method, request.url.path, body_bytes)

    rkey = _idemp_redis_key(scope, route_key, idem_key)
    r = await get_redis()

    raw = await r.get(rkey)
    if raw:
        data = json.loads(raw)
        if data.get("request_hash") and data["request_hash"] != req_hash:
            raise Conflict("Idempotency-Key reused with different request payload")
        if data.get("state") == "done":
            return JSONResponse(content=data.get("body"), status_code=int(data.get("status", 200)))
        raise Conflict("Request with this Idempotency-Key is still processing. Retry shortly.")

    processing_payload = {
        "state": "processing",
        "status": None,
        "body": None,
        "created_at": _iso_now(),
        "completed_at": None,
        "request_hash": req_hash,
    }
    ok = await r.set(rkey, json.dumps(processing_payload), ex=PROCESSING_TTL_SEC, nx=True)
    if not ok:
        # someone else won the race
        raise Conflict("Request with this Idempotency-Key is still processing. Retry shortly.")

    return (rkey, req_hash)


async def idempotency_store_result(redis_key: str, req_hash: str, *, status: int, body: dict):
    r = await get_redis()
    payload = {
        "state": "done",
        "status": int(status),
        "body": body,
        "created_at": None,
        "completed_at": _iso_now(),
        "request_hash": req_hash,
    }
    await r.set(redis_key, json.dumps(payload), ex=DONE_TTL_SEC)


async def idempotency_clear_key(redis_key: str):
    """Release the processing marker after a failed request so it can be retried."""
    r = await get_redis()
    await r.delete(redis_key)
    logger.info(f"Cleared idempotency key {redis_key}")
