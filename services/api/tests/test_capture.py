import pytest

from ledger.models import ChangeSet, LensRun
from ledger.services import change_review


def _headers(actor):
    return {"X-Actor-Id": actor.id}


def _track(client, entity, actor, **overrides):
    body = {"actorId": actor.id, "mediaUrl": "s3://captures/pantry.jpg"}
    body.update(overrides)
    resp = client.post(f"/entities/{entity.id}/tracks", json=body, headers=_headers(actor))
    assert resp.status_code == 200, resp.text
    return resp.json()


def _pending_run(db_session, track_id):
    db_session.expire_all()
    return db_session.query(LensRun).filter_by(track_id=track_id).one()


def test_track_queues_pending_lens_run(client, db_session, entity, member, pantry):
    track = _track(client, entity, member, locationId=pantry.id, telemetry={"lux": 120})
    assert track["locationId"] == pantry.id
    assert track["telemetry"] == {"lux": 120}

    run = _pending_run(db_session, track["id"])
    assert run.status == "PENDING"
    assert run.lens.type == "INVENTORY_LENS"


def test_track_actor_must_be_member(client, db_session, entity, member, outsider):
    resp = client.post(
        f"/entities/{entity.id}/tracks",
        json={"actorId": outsider.id, "mediaUrl": "s3://captures/pantry.jpg"},
        headers=_headers(member),
    )
    assert resp.status_code == 400

    db_session.expire_all()
    assert db_session.query(LensRun).count() == 0


def test_track_with_unregistered_lens_is_not_queued(client, db_session, entity, member):
    track = _track(client, entity, member, lensType="RECEIPT_LENS")
    db_session.expire_all()
    assert db_session.query(LensRun).filter_by(track_id=track["id"]).count() == 0


def test_process_lens_run_proposes_inventory_diff(client, db_session, entity, member, pantry, potatoes):
    track = _track(client, entity, member, locationId=pantry.id)
    run = _pending_run(db_session, track["id"])

    resp = client.post(f"/lens-runs/{run.id}/process", headers=_headers(member))
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["lensRun"]["status"] == "COMPLETED"
    assert data["changeSet"]["type"] == "INVENTORY_DIFF"
    assert data["changeSet"]["status"] == "PENDING"
    assert data["changeSet"]["subjectType"] == "TRACK"
    assert data["changeSet"]["trackId"] == track["id"]
    assert data["changeSet"]["payload"]["items"] == [
        {"resourceId": potatoes.id, "locationId": pantry.id, "quantity": 1}
    ]
    assert data["question"]["batchId"] == data["changeSet"]["id"]
    assert data["lensRun"]["rawOutput"] == data["changeSet"]["payload"]


def test_process_twice_conflicts(client, db_session, entity, member):
    track = _track(client, entity, member)
    run = _pending_run(db_session, track["id"])

    assert client.post(f"/lens-runs/{run.id}/process", headers=_headers(member)).status_code == 200
    resp = client.post(f"/lens-runs/{run.id}/process", headers=_headers(member))
    assert resp.status_code == 409

    db_session.expire_all()
    assert db_session.query(ChangeSet).filter_by(track_id=track["id"]).count() == 1


def test_empty_household_gets_empty_diff(client, db_session, entity, member):
    track = _track(client, entity, member)
    run = _pending_run(db_session, track["id"])
    data = client.post(f"/lens-runs/{run.id}/process", headers=_headers(member)).json()
    assert data["changeSet"]["payload"] == {"items": []}


def test_analyst_failure_marks_run_failed(db_session, entity, member, client, monkeypatch):
    track = _track(client, entity, member)
    run = _pending_run(db_session, track["id"])

    def broken(*args, **kwargs):
        raise RuntimeError("model timed out")

    monkeypatch.setattr(change_review, "run_analyst", broken)
    with pytest.raises(RuntimeError):
        change_review.process_lens_run(db_session, member.id, run.id)

    db_session.expire_all()
    failed = db_session.get(LensRun, run.id)
    assert failed.status == "FAILED"
    assert "timed out" in failed.last_error
    assert db_session.query(ChangeSet).filter_by(track_id=track["id"]).count() == 0


def test_capture_meal_plan_lens(client, entity, admin):
    resp = client.post(f"/entities/{entity.id}/capture/MEAL_PLAN_LENS", headers=_headers(admin))
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["changeSet"]["type"] == "WEEKLY_MEAL_PLAN"
    types = [t["type"] for t in data["changeSet"]["payload"]["tasks"]]
    assert types == ["BUY_RESOURCE", "COOK_RECIPE_STEP"]

    cs_id = data["changeSet"]["id"]
    client.post(f"/changesets/{cs_id}/approve", headers=_headers(admin))
    applied = client.post(f"/changesets/{cs_id}/apply", headers=_headers(admin)).json()
    assert applied["result"]["createdTasks"] == 2


def test_capture_unknown_lens_404(client, entity, admin):
    resp = client.post(f"/entities/{entity.id}/capture/RECEIPT_LENS", headers=_headers(admin))
    assert resp.status_code == 404


def test_capture_requires_membership(client, entity, outsider):
    resp = client.post(f"/entities/{entity.id}/capture/INVENTORY_LENS", headers=_headers(outsider))
    assert resp.status_code == 403


def test_manual_lens_run_for_existing_track(client, db_session, entity, member):
    track = _track(client, entity, member, lensType="RECEIPT_LENS")
    resp = client.post(
        f"/entities/{entity.id}/lens-runs",
        json={"trackId": track["id"], "lensType": "MEAL_PLAN_LENS"},
        headers=_headers(member),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "PENDING"

    data = client.post(f"/lens-runs/{resp.json()['id']}/process", headers=_headers(member)).json()
    assert data["changeSet"]["type"] == "WEEKLY_MEAL_PLAN"
