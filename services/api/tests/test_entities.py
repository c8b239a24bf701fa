from datetime import datetime, timezone

from ledger.models import AuditLog, Goal, InventoryItem
from ledger.services.planning import week_range

from conftest import engine


def _headers(actor):
    return {"X-Actor-Id": actor.id}


def test_create_actor_and_duplicate_email(client):
    resp = client.post("/actors", json={"email": "cook@example.com", "name": "Cook"})
    assert resp.status_code == 200
    assert resp.json()["email"] == "cook@example.com"

    resp = client.post("/actors", json={"email": "cook@example.com"})
    assert resp.status_code == 409


def test_create_actor_rejects_bad_email(client):
    resp = client.post("/actors", json={"email": "not-an-email"})
    assert resp.status_code == 400


def test_create_entity_bootstraps_locations(client, admin):
    resp = client.post("/entities", json={"name": "Lake House"}, headers=_headers(admin))
    assert resp.status_code == 200, resp.text
    data = resp.json()
    names = {loc["name"] for loc in data["locations"]}
    assert names == {"Home", "Pantry", "Fridge", "Freezer"}

    home = next(loc for loc in data["locations"] if loc["name"] == "Home")
    children = [loc for loc in data["locations"] if loc["parentId"] == home["id"]]
    assert len(children) == 3

    # Creator is ADMIN, so admin-only calls succeed
    entity_id = data["entity"]["id"]
    resp = client.post(f"/entities/{entity_id}/resources", json={"name": "Rice"}, headers=_headers(admin))
    assert resp.status_code == 200


def test_add_member_requires_admin(client, entity, admin, member, outsider):
    resp = client.post(
        f"/entities/{entity.id}/actors", json={"actorId": outsider.id}, headers=_headers(member)
    )
    assert resp.status_code == 403

    resp = client.post(
        f"/entities/{entity.id}/actors", json={"actorId": outsider.id, "role": "MEMBER"}, headers=_headers(admin)
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "MEMBER"

    # Outsider is now a member and can read
    assert client.get(f"/entities/{entity.id}/inventory", headers=_headers(outsider)).status_code == 200


def test_unknown_entity_404(client, admin):
    resp = client.get("/entities/no-such-entity/inventory", headers=_headers(admin))
    assert resp.status_code == 404


def test_location_parent_must_share_entity(client, db_session, entity, admin):
    other = client.post("/entities", json={"name": "Other"}, headers=_headers(admin)).json()
    foreign_parent = other["locations"][0]["id"]

    resp = client.post(
        f"/entities/{entity.id}/locations",
        json={"name": "Garage shelf", "parentId": foreign_parent},
        headers=_headers(admin),
    )
    assert resp.status_code == 400


def test_inventory_upsert_replaces_quantity(client, db_session, entity, member, pantry, potatoes):
    body = {"resourceId": potatoes.id, "locationId": pantry.id, "quantity": 2}
    first = client.post(f"/entities/{entity.id}/inventory", json=body, headers=_headers(member))
    body["quantity"] = 7
    second = client.post(f"/entities/{entity.id}/inventory", json=body, headers=_headers(member))

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert second.json()["quantity"] == 7
    assert db_session.query(InventoryItem).filter_by(entity_id=entity.id).count() == 1


def test_inventory_upsert_unknown_resource_404(client, entity, member, pantry):
    resp = client.post(
        f"/entities/{entity.id}/inventory",
        json={"resourceId": "nope", "locationId": pantry.id, "quantity": 1},
        headers=_headers(member),
    )
    assert resp.status_code == 404


def test_weekly_plan_reuses_goal(client, db_session, entity, admin):
    first = client.post(f"/entities/{entity.id}/goals/weekly-plan", headers=_headers(admin))
    second = client.post(f"/entities/{entity.id}/goals/weekly-plan", headers=_headers(admin))
    assert first.status_code == 200, first.text
    assert first.json()["goal"]["id"] == second.json()["goal"]["id"]
    assert first.json()["planningTask"]["id"] != second.json()["planningTask"]["id"]

    task = first.json()["planningTask"]
    assert task["type"] == "PLAN_WEEKLY_MEALS"
    assert task["goalId"] == first.json()["goal"]["id"]
    assert [a["role"] for a in task["taskActors"]] == ["ACCOUNTABLE"]
    assert db_session.query(Goal).filter_by(entity_id=entity.id).count() == 1


def test_weekly_plan_explicit_period(client, entity, admin):
    resp = client.post(
        f"/entities/{entity.id}/goals/weekly-plan",
        json={"periodStart": "2026-11-01T00:00:00Z"},
        headers=_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["goal"]["periodEnd"].startswith("2026-11-08")

    resp = client.post(
        f"/entities/{entity.id}/goals/weekly-plan",
        json={"periodStart": "2026-11-08T00:00:00Z", "periodEnd": "2026-11-01T00:00:00Z"},
        headers=_headers(admin),
    )
    assert resp.status_code == 400


def test_weekly_plan_member_forbidden(client, entity, member):
    assert client.post(f"/entities/{entity.id}/goals/weekly-plan", headers=_headers(member)).status_code == 403


def test_week_range_starts_sunday():
    # Wednesday 2026-10-21
    start, end = week_range(datetime(2026, 10, 21, 15, 30, tzinfo=timezone.utc))
    assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 25, tzinfo=timezone.utc)

    # A Sunday is its own week start
    start, _ = week_range(datetime(2026, 10, 18, 0, 0, tzinfo=timezone.utc))
    assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)


def test_summary(client, entity, admin, member, pantry, potatoes):
    client.post(
        f"/entities/{entity.id}/inventory",
        json={"resourceId": potatoes.id, "locationId": pantry.id, "quantity": 1},
        headers=_headers(member),
    )
    client.post(f"/entities/{entity.id}/goals/weekly-plan", headers=_headers(admin))

    data = client.get(f"/entities/{entity.id}/summary", headers=_headers(member)).json()
    assert len(data["inventory"]) == 1
    assert len(data["goals"]) == 1
    assert [t["type"] for t in data["tasks"]] == ["PLAN_WEEKLY_MEALS"]


def test_audit_is_newest_first(client, entity, admin):
    client.post(f"/entities/{entity.id}/resources", json={"name": "Rice"}, headers=_headers(admin))
    client.post(f"/entities/{entity.id}/locations", json={"name": "Cellar"}, headers=_headers(admin))

    actions = [a["action"] for a in client.get(f"/entities/{entity.id}/audit", headers=_headers(admin)).json()]
    assert actions[:2] == ["CREATE_LOCATION", "CREATE_RESOURCE"]
    assert actions[-1] == "CREATE_ENTITY"


def test_audit_failure_does_not_block_mutation(client, db_session, entity, member, pantry, potatoes):
    db_session.commit()
    AuditLog.__table__.drop(engine)

    resp = client.post(
        f"/entities/{entity.id}/inventory",
        json={"resourceId": potatoes.id, "locationId": pantry.id, "quantity": 4},
        headers=_headers(member),
    )
    assert resp.status_code == 200, resp.text
    assert db_session.query(InventoryItem).filter_by(entity_id=entity.id).one().quantity == 4


def test_seed_demo_is_idempotent(client):
    first = client.post("/seed/demo")
    second = client.post("/seed/demo")
    assert first.status_code == 200, first.text
    assert second.status_code == 200

    a, b = first.json(), second.json()
    assert a["actor"]["id"] == b["actor"]["id"]
    assert a["entity"]["id"] == b["entity"]["id"]
    assert a["goal"]["id"] == b["goal"]["id"]
    assert a["planTask"]["id"] == b["planTask"]["id"]
    assert a["membership"]["role"] == "ADMIN"

    headers = {"X-Actor-Id": a["actor"]["id"]}
    inventory = client.get(f"/entities/{a['entity']['id']}/inventory", headers=headers).json()
    assert sorted(i["quantity"] for i in inventory) == [1, 2]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True

    resp = client.get("/ready")
    assert resp.json() == {"ok": True, "redis_ok": True}


def test_default_rate_limit(client):
    for _ in range(100):
        assert client.get("/health").status_code == 200

    resp = client.get("/health")
    assert resp.status_code == 429
