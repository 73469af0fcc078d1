"""Authentication: Google sign-in, JWT guard and the development bypass.

The suite runs with ``AUTH_DISABLED`` on; tests that need the real guard
patch :pydata:`seohub.dependencies.auth.AUTH_DISABLED` for their duration.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from seohub.crud import crud
from seohub.dependencies import auth as auth_dep
from seohub.routers import auth as auth_router


@pytest.fixture
def prod_auth(monkeypatch):
    monkeypatch.setattr(auth_dep, "AUTH_DISABLED", False)


def _bearer(user, expires_delta=auth_router.ACCESS_TOKEN_TTL):
    return {"Authorization": f"Bearer {auth_router._issue_access_token(user.id, user.email, expires_delta)}"}


def test_google_sign_in_creates_user(monkeypatch, client, db_session, prod_auth):
    claims = {"email": "alice@acme.test", "sub": "google-123", "name": "Alice"}
    monkeypatch.setattr(auth_router, "_verify_google_id_token", lambda _tok: claims)

    resp = client.post("/api/auth/google", json={"id_token": "dummy"})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 1800

    payload = jwt.decode(data["access_token"], "test-jwt-secret", algorithms=["HS256"])
    user = crud.get_user_by_email(db_session, "alice@acme.test")
    assert payload["sub"] == str(user.id)
    assert user.provider_user_id == "google-123"
    assert crud.get_audit_logs(db_session, action="USER_SIGNED_IN")

    # The minted token is accepted by the guard.
    verified = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert verified.json()["user"]["email"] == "alice@acme.test"


def test_google_sign_in_rejects_disabled_account(monkeypatch, client, db_session, member_user):
    member_user.is_active = False
    db_session.commit()
    monkeypatch.setattr(auth_router, "_verify_google_id_token", lambda _tok: {"email": member_user.email})

    assert client.post("/api/auth/google", json={"id_token": "dummy"}).status_code == 403


def test_google_sign_in_validation(client, db_session):
    assert client.post("/api/auth/google", json={}).status_code == 422
    # No GOOGLE_CLIENT_ID in the test environment.
    resp = client.post("/api/auth/google", json={"id_token": "dummy"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "GOOGLE_CLIENT_ID not set"


def test_guard_requires_header(client, db_session, prod_auth):
    resp = client.get("/api/users/me")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Not authenticated"


def test_guard_rejects_bad_tokens(client, db_session, member_user, prod_auth):
    assert client.get("/api/users/me", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/api/users/me", headers={"Authorization": "Basic abc"}).status_code == 401

    expired = _bearer(member_user, timedelta(minutes=-1))
    resp = client.get("/api/users/me", headers=expired)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired token"


def test_guard_accepts_valid_token(client, db_session, member_user, prod_auth):
    resp = client.get("/api/auth/verify", headers=_bearer(member_user))
    assert resp.status_code == 200
    assert resp.json()["user"] == {
        "id": member_user.id,
        "email": "member@acme.test",
        "role": "USER",
        "isSuperAdmin": False,
        "agencyId": member_user.agency_id,
    }

    db_session.refresh(member_user)
    assert member_user.last_login is not None


def test_inactive_user_is_rejected(client, db_session, member_user, prod_auth):
    headers = _bearer(member_user)
    member_user.is_active = False
    db_session.commit()

    resp = client.get("/api/auth/verify", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "User not found or inactive"


def test_dev_bypass_signs_in_dev_user(client, db_session):
    resp = client.get("/api/auth/verify")
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "dev@local"
    assert crud.get_user_by_email(db_session, "dev@local") is not None


def test_super_admin_from_admin_emails(monkeypatch, member_user):
    from seohub.config import get_settings

    assert not auth_dep.is_super_admin(member_user)
    monkeypatch.setattr(get_settings(), "admin_emails", "Member@Acme.test")
    assert auth_dep.is_super_admin(member_user)
