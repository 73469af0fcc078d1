"""Profile, theme, user directory and invitation routes."""

from datetime import timedelta

import pytest

from seohub.crud import crud
from seohub.utils.time import utc_now_naive


def test_read_and_update_profile(client, login, member_user):
    login(member_user)

    me = client.get("/api/users/me").json()
    assert me["email"] == "member@acme.test"
    assert me["role"] == "USER"
    assert me["isSuperAdmin"] is False

    resp = client.put("/api/users/me", json={"name": "Maxine Member"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Maxine Member"


def test_user_details_include_agency(client, login, member_user):
    login(member_user)

    details = client.get("/api/user/details").json()
    assert details["agency"]["slug"] == "acme-motors"
    assert details["agency"]["plan"] == "starter"


def test_theme_defaults_and_update(client, login, member_user):
    login(member_user)

    assert client.get("/api/user/theme").json() == {
        "companyName": "Rylie SEO Hub",
        "primaryColor": "#3b82f6",
        "secondaryColor": "#1e40af",
        "logo": None,
    }

    resp = client.post("/api/user/theme", json={"companyName": "Acme", "primaryColor": "#ff0000"})
    assert resp.status_code == 200
    assert resp.json()["theme"]["primaryColor"] == "#ff0000"
    assert client.get("/api/user/theme").json()["companyName"] == "Acme"

    assert client.post("/api/user/theme", json={"primaryColor": "red"}).status_code == 422


def test_current_agency(client, login, member_user, super_admin):
    login(member_user)
    assert client.get("/api/agencies/current").json()["name"] == "Acme Motors"

    login(super_admin)
    assert client.get("/api/agencies/current").status_code == 404


# ---------------------------------------------------------------------------
# Directory (super admin)
# ---------------------------------------------------------------------------


def test_directory_is_super_admin_only(client, login, admin_user):
    login(admin_user)

    resp = client.get("/api/users")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Forbidden - Super Admin only"


def test_super_admin_manages_users(client, db_session, login, super_admin, member_user):
    login(super_admin)

    emails = {u["email"] for u in client.get("/api/users").json()["users"]}
    assert emails == {"root@seohub.test", "member@acme.test"}

    resp = client.patch("/api/users", json={"userId": member_user.id, "role": "ADMIN"})
    assert resp.status_code == 200
    assert resp.json()["role"] == "ADMIN"
    assert crud.get_audit_logs(db_session, action="USER_UPDATED")

    assert client.patch("/api/users", json={"userId": 999, "role": "ADMIN"}).status_code == 404


def test_delete_user(client, db_session, login, super_admin, member_user):
    login(super_admin)

    resp = client.delete("/api/users", params={"userId": super_admin.id})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot delete your own account"

    member_id = member_user.id
    assert client.delete("/api/users", params={"userId": member_id}).json() == {"success": True}
    assert crud.get_user(db_session, member_id) is None
    [log] = crud.get_audit_logs(db_session, action="USER_DELETED")
    assert log.details == {"deletedUserEmail": "member@acme.test"}


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@pytest.fixture
def invite(client, login, super_admin, agency, sent_emails):
    login(super_admin)
    resp = client.post("/api/users/invite", json={"email": "new@acme.test", "role": "admin", "agencyId": agency.id})
    assert resp.status_code == 200, resp.text
    return resp.json()["invite"]


def test_create_invite_sends_email(invite, sent_emails):
    assert invite["status"] == "pending"
    assert "/invite/" in invite["inviteUrl"]
    assert sent_emails[0]["to"] == ["new@acme.test"]
    assert sent_emails[0]["subject"] == "Welcome to Acme Motors!"


def test_duplicate_invites_are_rejected(client, invite, member_user):
    resp = client.post("/api/users/invite", json={"email": "new@acme.test"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "An active invite already exists for this email"

    resp = client.post("/api/users/invite", json={"email": member_user.email})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User already exists with this email"


def test_inviting_existing_user_as_super_admin_promotes(client, db_session, login, super_admin, member_user):
    login(super_admin)

    resp = client.post("/api/users/invite", json={"email": member_user.email, "isSuperAdmin": True})
    assert resp.json()["message"] == "User already exists - updated to super admin"
    db_session.refresh(member_user)
    assert member_user.is_super_admin is True


def test_invite_rejects_bad_email(client, login, super_admin):
    login(super_admin)
    assert client.post("/api/users/invite", json={"email": "nope"}).status_code == 422


def test_invite_landing_and_accept(client, db_session, login, invite, agency):
    token = invite["inviteUrl"].rsplit("/", 1)[-1]

    landing = client.get(f"/api/invite/{token}").json()["invite"]
    assert landing["email"] == "new@acme.test"
    assert landing["invitedBy"]["email"] == "root@seohub.test"
    assert landing["agency"] == {"name": "Acme Motors"}

    newcomer = crud.create_user(db_session, email="New@acme.test")
    login(newcomer)
    resp = client.post(f"/api/invite/{token}/accept")
    assert resp.status_code == 200, resp.text
    assert resp.json()["user"]["role"] == "ADMIN"

    db_session.refresh(newcomer)
    assert newcomer.agency_id == agency.id
    assert crud.get_audit_logs(db_session, action="INVITE_ACCEPTED")

    resp = client.post(f"/api/invite/{token}/accept")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "This invitation has already been accepted"


def test_accept_requires_matching_email(client, login, invite, member_user):
    token = invite["inviteUrl"].rsplit("/", 1)[-1]
    login(member_user)

    resp = client.post(f"/api/invite/{token}/accept")
    assert resp.status_code == 403
    assert "signed in as member@acme.test" in resp.json()["detail"]


def test_expired_invite(client, db_session, invite):
    token = invite["inviteUrl"].rsplit("/", 1)[-1]
    row = crud.get_invite_by_token(db_session, token)
    row.expires_at = utc_now_naive() - timedelta(minutes=1)
    db_session.commit()

    assert client.get(f"/api/invite/{token}").status_code == 410
    assert client.post(f"/api/invite/{token}/accept").status_code == 410


def test_unknown_invite(client, db_session):
    assert client.get("/api/invite/missing-token").status_code == 404
