"""Dealership onboarding submission and package progress."""

import pytest

from seohub.crud import crud
from seohub.services import onboarding as onboarding_service
from seohub.services import task_context

FORM = {
    "businessName": "Acme Ford",
    "package": "GOLD",
    "mainBrand": "Ford",
    "address": "1 Main St",
    "city": "Austin",
    "state": "TX",
    "zipCode": "78701",
    "contactName": "Pat Dealer",
    "contactTitle": "GM",
    "email": "pat@acmeford.test",
    "phone": "555-0100",
    "websiteUrl": "https://acmeford.test",
    "billingEmail": "billing@acmeford.test",
    "targetVehicleModels": ["F-150", "Bronco", "Explorer"],
    "targetCities": ["Austin", "Round Rock", "Cedar Park"],
    "targetDealers": ["Rival Chevy", "Rival Toyota", " ", "Rival Ram"],
}


@pytest.fixture
def seowerks_calls(monkeypatch):
    calls = []

    def _submit(data):
        calls.append(data)
        return {"success": True, "message": "Successfully submitted to SEOWerks platform"}

    monkeypatch.setattr(onboarding_service, "submit_to_seowerks", _submit)
    return calls


def test_submit_onboarding(client, db_session, login, member_user, seowerks_calls):
    login(member_user)
    task_context.get_cached_task_context(db_session, member_user.agency_id)

    resp = client.post("/api/onboarding", json=FORM)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["message"] == "Onboarding submitted successfully"
    assert body["referenceId"].startswith("local-")

    [sent] = seowerks_calls
    assert sent["dealerName"] == "Acme Ford"
    assert sent["targetDealers"] == ["Rival Chevy", "Rival Toyota", "Rival Ram"]

    record = crud.get_latest_onboarding(db_session, member_user.agency_id)
    assert record.status == "submitted"
    assert record.submitted_by == member_user.email
    assert record.seoworks_response["seoworksResult"]["success"] is True
    db_session.refresh(member_user)
    assert member_user.onboarding_completed is True
    assert task_context.cache_stats()["size"] == 0
    assert crud.get_audit_logs(db_session, action="ONBOARDING_SUBMITTED")

    listed = client.get("/api/onboarding").json()["onboardings"]
    assert [o["businessName"] for o in listed] == ["Acme Ford"]


def test_submit_reports_missing_fields(client, login, member_user, seowerks_calls):
    login(member_user)

    resp = client.post("/api/onboarding", json={**FORM, "city": "", "targetCities": ["Austin"]})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Validation failed", "missingFields": ["city", "targetCities (minimum 3)"]}
    assert seowerks_calls == []


def test_failed_webhook_marks_onboarding_failed(client, db_session, monkeypatch, login, member_user, seowerks_calls):
    monkeypatch.setattr(onboarding_service, "submit_to_webhook", lambda form: {"success": False, "error": "timeout"})
    login(member_user)

    resp = client.post("/api/onboarding", json=FORM)
    assert resp.status_code == 500
    assert resp.json()["webhookError"] == "timeout"

    record = crud.get_latest_onboarding(db_session, member_user.agency_id)
    assert record.status == "failed"
    assert record.submitted_at is None


def test_onboarding_requires_agency(client, login, super_admin):
    login(super_admin)
    assert client.post("/api/onboarding", json=FORM).status_code == 400


# ---------------------------------------------------------------------------
# Package progress
# ---------------------------------------------------------------------------


def test_package_progress_counts_completed_orders(client, db_session, login, member_user, seowerks_calls):
    login(member_user)
    assert client.get("/api/package-progress").status_code == 404

    client.post("/api/onboarding", json=FORM)
    for task_type in ("blog", "blog", "gbp"):
        order = crud.create_order(db_session, user=member_user, task_type=task_type, title=task_type, description="x")
        order.status = "completed"
    crud.create_order(db_session, user=member_user, task_type="page", title="still open", description="x")
    db_session.commit()

    data = client.get("/api/package-progress").json()["data"]
    assert data["package"] == "GOLD"
    assert data["totalCompleted"] == 3
    assert data["activeTasks"] == 46
    blogs = next(c for c in data["categoryProgress"] if c["category"] == "blogs")
    assert blogs == {"category": "blogs", "completed": 2, "total": 12, "percentage": pytest.approx(16.67, 0.01), "remaining": 10}

    assert client.get("/api/package-progress", params={"package": "platinum"}).json()["data"]["totalTasks"] == 77
    assert client.get("/api/package-progress", params={"package": "bronze"}).status_code == 404


# ---------------------------------------------------------------------------
# SEOWerks form encoding
# ---------------------------------------------------------------------------


def test_seowerks_form_uses_indexed_targets():
    data = onboarding_service.transform_to_seowerks(
        {
            "business_name": "Acme Ford",
            "package": "GOLD",
            "main_brand": "Ford",
            "target_vehicle_models": ["F-150", "Bronco"],
            "target_cities": ["Austin"],
            "target_dealers": [],
        }
    )
    form = onboarding_service.build_seowerks_form(data)

    assert form["dealer_name"] == "Acme Ford"
    assert form["target_vehicle_models[0]"] == "F-150"
    assert form["target_vehicle_models[1]"] == "Bronco"
    assert "other_brand" not in form
    assert "target_dealers[0]" not in form
