"""Chat escalations: raising, reading, resolving and the admin queue."""

from seohub.crud import crud


def _raise(client, question="Why did traffic drop?", priority="medium", **extra):
    resp = client.post("/api/escalations", json={"question": question, "priority": priority, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()["escalationId"]


def test_create_requires_question_and_priority(client, login, member_user):
    login(member_user)

    resp = client.post("/api/escalations", json={"question": "Help"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required fields: question and priority"


def test_create_and_read(client, db_session, login, member_user):
    login(member_user)

    escalation_id = _raise(client, contactPreference="phone", aiResponse="Seasonality, most likely.")

    one = client.get("/api/escalations", params={"id": escalation_id}).json()
    assert one["originalQuestion"] == "Why did traffic drop?"
    assert one["status"] == "pending"
    assert one["tags"] == ["phone", "chat-escalation"]
    assert one["agencyId"] == member_user.agency_id

    listing = client.get("/api/escalations").json()
    assert listing["total"] == 1
    assert crud.get_audit_logs(db_session, action="ESCALATION_CREATED")


def test_users_only_see_their_own(client, db_session, login, member_user, admin_user):
    login(admin_user)
    foreign_id = _raise(client)

    login(member_user)
    assert client.get("/api/escalations").json()["total"] == 0
    assert client.get("/api/escalations", params={"id": foreign_id}).status_code == 404


def test_owner_resolves_escalation(client, login, member_user):
    login(member_user)
    escalation_id = _raise(client)

    resp = client.patch(
        "/api/escalations",
        json={"escalationId": escalation_id, "assignedTo": "seo-team", "resolution": "Fixed the sitemap"},
    )
    assert resp.status_code == 200
    escalation = resp.json()["escalation"]
    assert escalation["status"] == "resolved"
    assert escalation["resolvedBy"] == member_user.email
    assert escalation["assignedTo"] == "seo-team"
    assert escalation["resolutionTime"] >= 0


def test_update_guards(client, db_session, login, member_user, agency):
    login(member_user)
    escalation_id = _raise(client)

    assert client.patch("/api/escalations", json={"status": "assigned"}).status_code == 400
    assert client.patch("/api/escalations", json={"escalationId": 999, "status": "assigned"}).status_code == 404

    bystander = crud.create_user(db_session, email="bystander@acme.test", agency_id=agency.id)
    login(bystander)
    resp = client.patch("/api/escalations", json={"escalationId": escalation_id, "status": "assigned"})
    assert resp.status_code == 403


def test_admin_updates_status(client, login, member_user, admin_user):
    login(member_user)
    escalation_id = _raise(client)

    login(admin_user)
    resp = client.patch("/api/escalations", json={"escalationId": escalation_id, "status": "in_progress"})
    assert resp.json()["escalation"]["status"] == "in_progress"


def test_admin_queue_orders_by_priority(client, login, member_user, admin_user):
    login(member_user)
    for priority in ("low", "urgent", "medium", "high", "urgent"):
        _raise(client, question=f"{priority} question", priority=priority)

    login(admin_user)
    body = client.get("/api/admin/escalations").json()

    assert [e["priority"] for e in body["escalations"]] == ["urgent", "urgent", "high", "medium", "low"]
    # Newest first within a rank.
    urgent_ids = [e["id"] for e in body["escalations"][:2]]
    assert urgent_ids == sorted(urgent_ids, reverse=True)
    assert body["escalations"][0]["user"]["email"] == member_user.email
    assert body["escalations"][0]["agency"]["name"] == "Acme Motors"
    assert body["stats"] == {
        "total": 5,
        "pending": 5,
        "assigned": 0,
        "in_progress": 0,
        "resolved": 0,
        "urgent": 2,
        "high": 1,
    }

    filtered = client.get("/api/admin/escalations", params={"priority": "urgent"}).json()
    assert filtered["stats"]["total"] == 2


def test_admin_queue_forbidden_for_members(client, login, member_user):
    login(member_user)

    resp = client.get("/api/admin/escalations")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin privileges required"


def test_admin_queue_is_scoped_to_agency(client, db_session, login, member_user, admin_user, other_agency, super_admin):
    outsider = crud.create_user(db_session, email="x@other.test", agency_id=other_agency.id)
    login(outsider)
    client.post("/api/escalations", json={"question": "Elsewhere?", "priority": "high"})
    login(member_user)
    client.post("/api/escalations", json={"question": "Ours?", "priority": "low"})

    login(admin_user)
    assert [e["question"] for e in client.get("/api/admin/escalations").json()["escalations"]] == ["Ours?"]

    login(super_admin)
    assert client.get("/api/admin/escalations").json()["stats"]["total"] == 2
