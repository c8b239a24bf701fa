import pytest
import uuid
import json
from unittest.mock import patch, AsyncMock
from fakeredis import FakeAsyncRedis
from fastapi import Request
from fastapi.responses import JSONResponse

from ledger.errors import Conflict
from ledger.infra.idempotency import idempotency_clear_key, idempotency_precheck, idempotency_store_result

# --- Mocking Redis ---

@pytest.fixture
def fake_redis():
    return FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def patch_redis_client(fake_redis):
    # Patch the get_redis used inside idempotency module
    with patch("ledger.infra.idempotency.get_redis", return_value=fake_redis):
        yield


def _request(idem_key=None, body=b'{"foo": "bar"}'):
    req = AsyncMock(spec=Request)
    req.headers = {"Idempotency-Key": idem_key} if idem_key else {}
    req.method = "POST"
    req.url.path = "/changesets/cs1/apply"
    req.body = AsyncMock(return_value=body)
    return req

# --- Unit Tests for Logic ---

@pytest.mark.asyncio
async def test_precheck_without_header_proceeds(patch_redis_client):
    assert await idempotency_precheck(_request(), scope="actor1", route_key="test") is None


@pytest.mark.asyncio
async def test_idempotency_flow(patch_redis_client, fake_redis):
    idem_key = str(uuid.uuid4())
    req = _request(idem_key)

    # 1. First call -> returns key to proceed
    res = await idempotency_precheck(req, scope="actor1", route_key="test_route")
    assert isinstance(res, tuple)
    rkey, rhash = res
    assert rkey.endswith(idem_key)

    data = json.loads(await fake_redis.get(rkey))
    assert data["state"] == "processing"

    # 2. Second concurrent call -> 409
    with pytest.raises(Conflict):
        await idempotency_precheck(req, scope="actor1", route_key="test_route")

    # 3. Store result
    await idempotency_store_result(rkey, rhash, status=200, body={"applied": True})
    data = json.loads(await fake_redis.get(rkey))
    assert data["state"] == "done"
    assert data["status"] == 200

    # 4. Third call -> returns cached response
    res2 = await idempotency_precheck(req, scope="actor1", route_key="test_route")
    assert isinstance(res2, JSONResponse)
    assert json.loads(res2.body) == {"applied": True}


@pytest.mark.asyncio
async def test_key_reuse_with_different_body_conflicts(patch_redis_client):
    idem_key = str(uuid.uuid4())
    rkey, rhash = await idempotency_precheck(_request(idem_key), scope="actor1", route_key="r")
    await idempotency_store_result(rkey, rhash, status=200, body={})

    with pytest.raises(Conflict):
        await idempotency_precheck(_request(idem_key, body=b'{"foo": "baz"}'), scope="actor1", route_key="r")


@pytest.mark.asyncio
async def test_cleared_key_can_be_retried(patch_redis_client):
    idem_key = str(uuid.uuid4())
    rkey, _ = await idempotency_precheck(_request(idem_key), scope="actor1", route_key="r")
    await idempotency_clear_key(rkey)

    res = await idempotency_precheck(_request(idem_key), scope="actor1", route_key="r")
    assert isinstance(res, tuple)

# --- Integration Test with DB and Client ---

def _approved_change_set(client, entity, admin):
    headers = {"X-Actor-Id": admin.id}
    cs = client.post(
        f"/entities/{entity.id}/changesets",
        json={"subjectType": "ENTITY", "subjectId": entity.id, "type": "WEEKLY_MEAL_PLAN",
              "payload": {"tasks": [{"type": "COOK_RECIPE_STEP"}]}},
        headers=headers,
    ).json()["changeSet"]
    client.post(f"/changesets/{cs['id']}/approve", headers=headers)
    return cs


def test_apply_retry_replays_first_response(client, entity, admin):
    cs = _approved_change_set(client, entity, admin)
    headers = {"X-Actor-Id": admin.id, "Idempotency-Key": str(uuid.uuid4())}

    resp1 = client.post(f"/changesets/{cs['id']}/apply", headers=headers)
    assert resp1.status_code == 200, resp1.text
    resp2 = client.post(f"/changesets/{cs['id']}/apply", headers=headers)
    assert resp2.status_code == 200, resp2.text
    assert resp1.json() == resp2.json()

    # Only one fan-out happened
    cook = client.get(
        f"/entities/{entity.id}/tasks", params={"type": "COOK_RECIPE_STEP"}, headers={"X-Actor-Id": admin.id}
    ).json()
    assert len(cook) == 1


def test_apply_retry_without_key_conflicts(client, entity, admin):
    cs = _approved_change_set(client, entity, admin)
    headers = {"X-Actor-Id": admin.id}

    assert client.post(f"/changesets/{cs['id']}/apply", headers=headers).status_code == 200
    assert client.post(f"/changesets/{cs['id']}/apply", headers=headers).status_code == 409


def test_failed_request_releases_key(client, entity, admin):
    cs = client.post(
        f"/entities/{entity.id}/changesets",
        json={"subjectType": "ENTITY", "subjectId": entity.id, "type": "INVENTORY_DIFF", "payload": {"items": []}},
        headers={"X-Actor-Id": admin.id},
    ).json()["changeSet"]
    headers = {"X-Actor-Id": admin.id, "Idempotency-Key": str(uuid.uuid4())}

    # Not approved yet: fails, and the key is not left "processing"
    assert client.post(f"/changesets/{cs['id']}/apply", headers=headers).status_code == 409

    client.post(f"/changesets/{cs['id']}/approve", headers={"X-Actor-Id": admin.id})
    resp = client.post(f"/changesets/{cs['id']}/apply", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["changeSet"]["status"] == "APPLIED"
