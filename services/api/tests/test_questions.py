def _headers(actor):
    return {"X-Actor-Id": actor.id}


def _proposal(client, entity, admin):
    return client.post(
        f"/entities/{entity.id}/changesets",
        json={"subjectType": "ENTITY", "subjectId": entity.id, "type": "INVENTORY_DIFF", "payload": {"items": []}},
        headers=_headers(admin),
    ).json()


def _task(client, entity, actor):
    return client.post(
        f"/entities/{entity.id}/tasks", json={"type": "INVENTORY_REVIEW"}, headers=_headers(actor)
    ).json()


def test_extra_question_joins_change_set_batch(client, entity, admin, member):
    proposal = _proposal(client, entity, admin)
    cs_id = proposal["changeSet"]["id"]

    resp = client.post(
        f"/entities/{entity.id}/questions",
        json={
            "subjectType": "CHANGESET",
            "subjectId": cs_id,
            "changeSetId": cs_id,
            "prompt": "Anything missing from the fridge?",
            "questionType": "FREE_TEXT",
        },
        headers=_headers(admin),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["batchId"] == cs_id

    batch = client.get(
        f"/entities/{entity.id}/questions", params={"batchId": cs_id}, headers=_headers(member)
    ).json()
    assert len(batch) == 2
    assert {q["questionType"] for q in batch} == {"YES_NO", "FREE_TEXT"}


def test_member_cannot_create_question(client, entity, member):
    resp = client.post(
        f"/entities/{entity.id}/questions",
        json={"subjectType": "ENTITY", "subjectId": entity.id, "prompt": "Shop today?"},
        headers=_headers(member),
    )
    assert resp.status_code == 403


def test_member_answers_question(client, entity, admin, member):
    question = _proposal(client, entity, admin)["question"]
    task = _task(client, entity, member)

    resp = client.post(
        f"/questions/{question['id']}/answers",
        json={"taskId": task["id"], "value": {"answer": "YES"}},
        headers=_headers(member),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["questionId"] == question["id"]
    assert resp.json()["value"] == {"answer": "YES"}

    audit = client.get(
        f"/entities/{entity.id}/audit", params={"action": "ANSWER_QUESTION"}, headers=_headers(admin)
    ).json()
    assert len(audit) == 1


def test_answer_task_must_share_entity(client, entity, admin):
    question = _proposal(client, entity, admin)["question"]
    other = client.post("/entities", json={"name": "Other"}, headers=_headers(admin)).json()["entity"]
    foreign_task = client.post(
        f"/entities/{other['id']}/tasks", json={"type": "INVENTORY_REVIEW"}, headers=_headers(admin)
    ).json()

    resp = client.post(
        f"/questions/{question['id']}/answers",
        json={"taskId": foreign_task["id"], "value": True},
        headers=_headers(admin),
    )
    assert resp.status_code == 400


def test_outsider_cannot_answer(client, entity, admin, outsider):
    question = _proposal(client, entity, admin)["question"]
    resp = client.post(
        f"/questions/{question['id']}/answers",
        json={"taskId": "whatever", "value": True},
        headers=_headers(outsider),
    )
    assert resp.status_code == 403


def test_approval_does_not_wait_for_answers(client, entity, admin):
    cs = _proposal(client, entity, admin)["changeSet"]
    resp = client.post(f"/changesets/{cs['id']}/approve", headers=_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"
