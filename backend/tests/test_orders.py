"""Order lifecycle, quota and scoping through the ``/api/orders`` routes."""

from fastapi.testclient import TestClient

from seohub.crud import crud

ORDER_BODY = {
    "taskType": "blog",
    "title": "Spring SUV roundup",
    "description": "Blog post comparing this year's SUVs",
    "priority": "high",
    "keywords": ["suv", "spring deals"],
}


def _create(client: TestClient, **overrides) -> dict:
    resp = client.post("/api/orders", json={**ORDER_BODY, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_order_defaults(client, login, member_user):
    login(member_user)

    order = _create(client)

    assert order["status"] == "pending"
    assert order["taskCategory"] == "Content Creation"
    assert order["userEmail"] == member_user.email
    assert order["agencyId"] == member_user.agency_id
    assert order["keywords"] == ["suv", "spring deals"]
    assert order["deliverables"] == []


def test_create_order_rejects_unknown_task_type(client, login, member_user):
    login(member_user)

    resp = client.post("/api/orders", json={**ORDER_BODY, "taskType": "podcast"})
    assert resp.status_code == 422


def test_starter_plan_monthly_limit(client, db_session, login, member_user):
    login(member_user)
    for i in range(50):
        crud.create_order(db_session, user=member_user, task_type="blog", title=f"Post {i}", description="x")

    resp = client.post("/api/orders", json=ORDER_BODY)
    assert resp.status_code == 429
    assert "Monthly order limit reached (50)" in resp.json()["detail"]


def test_enterprise_plan_is_unlimited(db_session, agency):
    agency.plan = "enterprise"
    db_session.commit()

    quota = crud.check_order_limit(db_session, agency)
    assert quota == {"allowed": True, "current": 0, "limit": None}


def test_status_lifecycle(client, login, admin_user):
    login(admin_user)
    order = _create(client)

    resp = client.patch(f"/api/orders/{order['id']}", json={"status": "in_progress", "assignedTo": "Writer"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "in_progress"
    assert body["startedAt"] is not None
    assert body["assignedTo"] == "Writer"

    resp = client.patch(
        f"/api/orders/{order['id']}",
        json={"status": "completed", "completionNotes": "Published", "qualityScore": 5},
    )
    assert resp.status_code == 200
    assert resp.json()["completedAt"] is not None

    messages = client.get(f"/api/orders/{order['id']}/messages").json()["messages"]
    assert [m["type"] for m in messages] == ["completion_note"]


def test_invalid_transition_is_rejected(client, login, admin_user):
    login(admin_user)
    order = _create(client)

    resp = client.patch(f"/api/orders/{order['id']}", json={"status": "completed"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid status transition from pending to completed"


def test_members_cannot_update_orders(client, login, member_user):
    login(member_user)
    order = _create(client)

    resp = client.patch(f"/api/orders/{order['id']}", json={"status": "in_progress"})
    assert resp.status_code == 403


def test_members_only_see_their_own_orders(client, db_session, login, agency, admin_user, member_user):
    crud.create_order(db_session, user=admin_user, task_type="page", title="Admin page", description="x")
    login(member_user)
    mine = _create(client)

    listing = client.get("/api/orders").json()
    assert [o["id"] for o in listing["orders"]] == [mine["id"]]
    assert listing["pagination"] == {"total": 1, "limit": 50, "offset": 0, "hasMore": False}

    login(admin_user)
    assert client.get("/api/orders").json()["pagination"]["total"] == 2


def test_orders_are_scoped_to_agency(client, db_session, login, other_agency, member_user):
    outsider = crud.create_user(db_session, email="x@other.test", role="ADMIN", agency_id=other_agency.id)
    foreign = crud.create_order(db_session, user=outsider, task_type="gbp", title="GBP", description="x")

    login(member_user)
    assert client.get(f"/api/orders/{foreign.id}").status_code == 404


def test_soft_delete_hides_order(client, db_session, login, member_user):
    login(member_user)
    order = _create(client)

    resp = client.delete(f"/api/orders/{order['id']}")
    assert resp.status_code == 200
    assert client.get(f"/api/orders/{order['id']}").status_code == 404
    assert crud.get_audit_logs(db_session, action="ORDER_DELETED")


def test_order_messages(client, login, member_user):
    login(member_user)
    order = _create(client)

    resp = client.post(f"/api/orders/{order['id']}/messages", json={"content": "Any update?", "type": "question"})
    assert resp.status_code == 201
    assert resp.json()["message"]["type"] == "question"

    detail = client.get(f"/api/orders/{order['id']}").json()
    assert detail["messages"][0]["content"] == "Any update?"


def test_deliverable_upload_and_delete(client, login, admin_user, static_dirs):
    login(admin_user)
    order = _create(client)

    resp = client.post(
        f"/api/orders/{order['id']}/upload",
        files={"file": ("draft.txt", b"hello world", "text/plain")},
        data={"description": "First draft"},
    )
    assert resp.status_code == 200, resp.text
    deliverable = resp.json()["deliverable"]
    assert deliverable["filename"] == "draft.txt"
    assert list((static_dirs / "uploads").rglob("*draft.txt"))

    resp = client.delete(f"/api/orders/{order['id']}/upload", params={"deliverableId": deliverable["id"]})
    assert resp.status_code == 200

    resp = client.delete(f"/api/orders/{order['id']}/upload", params={"deliverableId": deliverable["id"]})
    assert resp.status_code == 404


def test_agency_less_admin_cannot_reach_other_agencies(client, db_session, login, other_agency):
    owner = crud.create_user(db_session, email="x@other.test", agency_id=other_agency.id)
    foreign = crud.create_order(db_session, user=owner, task_type="blog", title="Secret", description="x")
    loose_admin = crud.create_user(db_session, email="loose@nowhere.test", role="ADMIN")
    login(loose_admin)

    assert client.get("/api/orders").status_code == 400
    assert client.get(f"/api/orders/{foreign.id}").status_code == 400
    assert client.patch(f"/api/orders/{foreign.id}", json={"status": "cancelled"}).status_code == 400
    assert client.delete(f"/api/orders/{foreign.id}").status_code == 400

    db_session.refresh(foreign)
    assert foreign.status == "pending"
    assert foreign.deleted_at is None


def test_super_admin_without_agency_sees_all_orders(client, db_session, login, other_agency, member_user, super_admin):
    owner = crud.create_user(db_session, email="x@other.test", agency_id=other_agency.id)
    crud.create_order(db_session, user=owner, task_type="blog", title="Theirs", description="x")
    crud.create_order(db_session, user=member_user, task_type="page", title="Ours", description="x")
    login(super_admin)

    titles = {o["title"] for o in client.get("/api/orders").json()["orders"]}
    assert titles == {"Theirs", "Ours"}
