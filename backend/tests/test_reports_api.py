"""``/api/reports`` routes: schedules, pause/resume, retries and the cron trigger."""

from datetime import timedelta

from seohub.crud import crud
from seohub.utils.time import utc_now_naive

SCHEDULE_BODY = {
    "cronPattern": "0 8 * * 1",
    "ga4PropertyId": "987654",
    "reportType": "MonthlyReport",
    "emailRecipients": ["gm@acme.test"],
}


def _failed_execution(db, schedule, *, attempt_count=1, error="boom"):
    execution = crud.create_execution(db, schedule=schedule, status="failed", attempt_count=attempt_count)
    execution.failed_at = utc_now_naive()
    execution.error = error
    execution.error_code = "UNKNOWN_ERROR"
    schedule.last_execution_id = execution.id
    db.commit()
    return execution


# ---------------------------------------------------------------------------
# Schedule CRUD
# ---------------------------------------------------------------------------


def test_schedule_crud(client, db_session, login, admin_user):
    login(admin_user)

    resp = client.post("/api/reports/schedules", json=SCHEDULE_BODY)
    assert resp.status_code == 201, resp.text
    created = resp.json()["schedule"]
    assert created["reportType"] == "MonthlyReport"
    assert created["nextRun"] is not None
    assert created["status"] == "idle"

    listed = client.get("/api/reports/schedules").json()["schedules"]
    assert [s["id"] for s in listed] == [created["id"]]

    resp = client.put(f"/api/reports/schedules/{created['id']}", json={"cronPattern": "30 6 * * *"})
    assert resp.status_code == 200
    assert resp.json()["schedule"]["cronPattern"] == "30 6 * * *"

    assert client.delete(f"/api/reports/schedules/{created['id']}").json() == {"success": True}
    assert client.get("/api/reports/schedules").json()["schedules"] == []
    assert crud.get_audit_logs(db_session, action="REPORT_SCHEDULE_CREATED")


def test_invalid_cron_is_rejected(client, login, admin_user):
    login(admin_user)

    resp = client.post("/api/reports/schedules", json={**SCHEDULE_BODY, "cronPattern": "every monday"})
    assert resp.status_code == 400
    assert "Invalid cron expression" in resp.json()["detail"]


def test_invalid_recipient_is_rejected(client, login, admin_user):
    login(admin_user)

    resp = client.post("/api/reports/schedules", json={**SCHEDULE_BODY, "emailRecipients": ["not-an-email"]})
    assert resp.status_code == 422


def test_schedules_require_agency(client, login, super_admin):
    login(super_admin)

    resp = client.get("/api/reports/schedules")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User not associated with an agency"


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------


def test_pause_and_resume(client, db_session, login, admin_user, schedule):
    login(admin_user)
    schedule.consecutive_failures = 3
    db_session.commit()

    resp = client.post(f"/api/reports/schedules/{schedule.id}/pause", json={"reason": "Holiday freeze"})
    assert resp.status_code == 200
    assert resp.json()["schedule"]["isPaused"] is True
    assert resp.json()["schedule"]["pausedReason"] == "Holiday freeze"

    resp = client.delete(f"/api/reports/schedules/{schedule.id}/pause")
    body = resp.json()["schedule"]
    assert body["isPaused"] is False
    assert body["pausedReason"] is None
    assert body["consecutiveFailures"] == 0

    actions = [log.action for log in crud.get_audit_logs(db_session)]
    assert "GA4_REPORT_SCHEDULE_PAUSED" in actions
    assert "GA4_REPORT_SCHEDULE_RESUMED" in actions


def test_pause_without_body_uses_default_reason(client, login, admin_user, schedule):
    login(admin_user)

    resp = client.post(f"/api/reports/schedules/{schedule.id}/pause")
    assert resp.json()["schedule"]["pausedReason"] == "Manually paused by user"


def test_member_cannot_pause_someone_elses_schedule(client, login, member_user, schedule):
    login(member_user)

    resp = client.post(f"/api/reports/schedules/{schedule.id}/pause")
    assert resp.status_code == 403


def test_pause_unknown_schedule(client, login, admin_user):
    login(admin_user)
    assert client.post("/api/reports/schedules/4242/pause").status_code == 404


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


def test_admin_queues_schedule_retry(client, db_session, login, admin_user, schedule, ga4_token, fake_ga4, sent_emails):
    login(admin_user)

    resp = client.post(f"/api/reports/schedules/{schedule.id}/retry")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Report schedule retry has been queued successfully."

    # The background task ran in its own session once the response was sent.
    db_session.expire_all()
    executions, total = crud.get_executions(db_session, agency_id=schedule.agency_id)
    assert total == 1
    assert executions[0].status == "completed"
    assert crud.get_audit_logs(db_session, action="REPORT_SCHEDULE_RETRY")


def test_member_cannot_queue_schedule_retry(client, login, member_user, schedule):
    login(member_user)
    assert client.post(f"/api/reports/schedules/{schedule.id}/retry").status_code == 403


def test_retry_execution_resumes_paused_schedule(
    client, db_session, login, admin_user, schedule, ga4_token, fake_ga4, sent_emails
):
    login(admin_user)
    schedule.is_paused = True
    schedule.paused_reason = "Paused after 5 consecutive failures: boom"
    db_session.commit()
    failed = _failed_execution(db_session, schedule)

    resp = client.post(f"/api/reports/retry/{failed.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Report retry initiated successfully"
    assert body["reportUrl"]

    db_session.refresh(schedule)
    assert schedule.is_paused is False
    assert crud.get_audit_logs(db_session, action="GA4_REPORT_RETRY")


def test_retry_execution_errors(client, db_session, login, admin_user, member_user, schedule, ga4_token, fake_ga4):
    login(admin_user)
    assert client.post("/api/reports/retry/777").status_code == 404

    completed = crud.create_execution(db_session, schedule=schedule, status="completed")
    resp = client.post(f"/api/reports/retry/{completed.id}")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Only failed executions can be retried"

    failed = _failed_execution(db_session, schedule)
    login(member_user)
    resp = client.post(f"/api/reports/retry/{failed.id}")
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Failed execution console
# ---------------------------------------------------------------------------


def test_failed_executions_listing(client, db_session, login, admin_user, schedule):
    login(admin_user)
    _failed_execution(db_session, schedule, attempt_count=1)
    _failed_execution(db_session, schedule, attempt_count=3)
    crud.create_execution(db_session, schedule=schedule, status="completed")

    resp = client.get("/api/reports/failed")
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 2
    assert sorted(e["canRetry"] for e in body["executions"]) == [False, True]
    row = body["executions"][0]
    assert row["schedule"]["agency"]["name"] == "Acme Motors"
    assert row["schedule"]["user"]["email"] == admin_user.email

    assert client.get("/api/reports/failed", params={"status": "all"}).json()["pagination"]["total"] == 3
    assert client.get("/api/reports/failed", params={"status": "bogus"}).status_code == 422


def test_failed_executions_forbidden_for_members(client, login, member_user):
    login(member_user)
    assert client.get("/api/reports/failed").status_code == 403


# ---------------------------------------------------------------------------
# Cron trigger
# ---------------------------------------------------------------------------


def test_trigger_requires_secret(client, db_session):
    assert client.post("/api/reports/trigger-scheduled-jobs").status_code == 401
    resp = client.post("/api/reports/trigger-scheduled-jobs", headers={"x-api-key": "wrong"})
    assert resp.status_code == 401


def test_trigger_with_nothing_due(client, db_session):
    resp = client.post("/api/reports/trigger-scheduled-jobs", headers={"Authorization": "Bearer test-trigger-secret"})
    assert resp.status_code == 200
    assert resp.json() == {
        "message": "No due schedules to process.",
        "processedCount": 0,
        "errorCount": 0,
        "totalDue": 0,
        "retriedCount": 0,
    }


def test_trigger_runs_due_schedules(client, db_session, schedule, ga4_token, fake_ga4, sent_emails):
    schedule.next_run = utc_now_naive() - timedelta(minutes=1)
    db_session.commit()

    resp = client.post("/api/reports/trigger-scheduled-jobs", headers={"x-api-key": "test-trigger-secret"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["processedCount"] == 1
    assert body["totalDue"] == 1

    db_session.refresh(schedule)
    assert schedule.next_run > utc_now_naive()
    assert schedule.last_run is not None


def test_trigger_fails_closed_without_configured_secret(client, db_session, monkeypatch):
    from seohub.config import get_settings

    monkeypatch.setattr(get_settings(), "report_trigger_secret", None)
    resp = client.post("/api/reports/trigger-scheduled-jobs", headers={"x-api-key": "anything"})
    assert resp.status_code == 500


# ---------------------------------------------------------------------------
# Ad-hoc test report
# ---------------------------------------------------------------------------


def test_test_report_requires_connected_property(client, login, admin_user):
    login(admin_user)

    assert client.post("/api/reports/test", json={}).json()["detail"] == "Report type is required"
    resp = client.post("/api/reports/test", json={"reportType": "WeeklySummary"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No GA4 property connected for this agency."


def test_test_report_generates_html(client, db_session, login, admin_user, agency, ga4_token, fake_ga4):
    login(admin_user)
    agency.ga4_property_id = "555"
    db_session.commit()

    resp = client.post(
        "/api/reports/test",
        json={"reportType": "QuarterlyBusinessReview", "dateRangeString": "2024-01-01/2024-03-31"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["dateRange"] == {"startDate": "2024-01-01", "endDate": "2024-03-31"}
    assert body["ga4PropertyId"] == "555"
    assert fake_ga4.fetches == [("555", "2024-01-01", "2024-03-31")]


def test_test_report_without_tokens_is_unauthorized(client, db_session, login, admin_user, agency):
    login(admin_user)
    agency.ga4_property_id = "555"
    db_session.commit()

    resp = client.post("/api/reports/test", json={"reportType": "WeeklySummary"})
    assert resp.status_code == 401
