"""Legacy requests view over orders."""

from seohub.crud import crud


def test_create_request_accepts_type_alias(client, db_session, login, member_user):
    login(member_user)

    resp = client.post("/api/requests", json={"title": "GBP refresh", "description": "Update hours", "type": "gbp"})
    assert resp.status_code == 201, resp.text
    order = resp.json()["order"]
    assert order["taskType"] == "gbp"
    assert order["taskCategory"] == "Local SEO"
    assert order["priority"] == "medium"
    assert order["userEmail"] == "member@acme.test"
    assert crud.get_audit_logs(db_session, action="ORDER_CREATED")


def test_create_request_missing_fields(client, login, member_user):
    login(member_user)

    resp = client.post("/api/requests", json={"title": "No description", "taskType": "blog"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required fields: title, description, taskType"


def test_listing_is_limited_to_own_requests(client, db_session, login, admin_user, member_user):
    mine = crud.create_order(db_session, user=member_user, task_type="blog", title="Mine", description="x")
    crud.create_order(db_session, user=admin_user, task_type="page", title="Theirs", description="x")
    crud.create_order_message(db_session, order_id=mine.id, user_id=member_user.id, content="Any update?")
    login(member_user)

    body = client.get("/api/requests").json()
    assert body["total"] == 1
    assert body["orders"] == body["requests"]
    [row] = body["requests"]
    assert row["title"] == "Mine"
    assert row["latestMessage"]["content"] == "Any update?"

    assert client.get("/api/requests", params={"taskType": "page"}).json()["total"] == 0
