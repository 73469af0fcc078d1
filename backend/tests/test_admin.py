"""Agency administration and the feature flag registry."""

import pytest

from seohub.crud import crud
from seohub.services.feature_flags import FeatureFlagService
from seohub.services.feature_flags import hash_user_id
from seohub.services.feature_flags import segment_for


def test_super_admin_lists_and_creates_agencies(client, db_session, login, super_admin, member_user):
    login(super_admin)

    agencies = client.get("/api/admin/agencies").json()["agencies"]
    assert [(a["slug"], a["userCount"]) for a in agencies] == [("acme-motors", 1)]

    resp = client.post("/api/admin/agencies", json={"name": "Zed Cars", "slug": "zed-cars", "plan": "growth"})
    assert resp.status_code == 201
    assert resp.json()["agency"]["plan"] == "growth"
    assert crud.get_audit_logs(db_session, action="AGENCY_CREATED")

    resp = client.post("/api/admin/agencies", json={"name": "Zed Again", "slug": "zed-cars"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Agency slug already exists"

    assert client.post("/api/admin/agencies", json={"name": "Bad", "slug": "Bad Slug"}).status_code == 422


def test_agency_admin_cannot_manage_agencies(client, login, admin_user):
    login(admin_user)
    assert client.get("/api/admin/agencies").status_code == 403


# ---------------------------------------------------------------------------
# Feature flags over HTTP
# ---------------------------------------------------------------------------


def test_list_feature_flags(client, login, admin_user):
    login(admin_user)

    flags = client.get("/api/admin/feature-flags").json()["flags"]
    assert [f["key"] for f in flags] == [
        "LOGO_UPLOAD",
        "ADVANCED_ANALYTICS",
        "MULTI_MODEL_CHAT",
        "WHITE_LABEL_THEMES",
        "API_ACCESS",
    ]
    assert flags[0]["rolloutPercentage"] == 100


def test_update_feature_flag(client, login, admin_user):
    login(admin_user)

    resp = client.put(
        "/api/admin/feature-flags",
        json={"flagKey": "API_ACCESS", "enabled": True, "rolloutPercentage": 25, "userSegments": ["admin"]},
    )
    assert resp.status_code == 200
    flag = resp.json()["flag"]
    assert flag["enabled"] is True
    assert flag["rolloutPercentage"] == 25
    assert flag["userSegments"] == ["admin"]


def test_update_feature_flag_errors(client, login, admin_user):
    login(admin_user)

    assert client.put("/api/admin/feature-flags", json={"enabled": True}).status_code == 400
    assert client.put("/api/admin/feature-flags", json={"flagKey": "NOPE", "enabled": True}).status_code == 404
    resp = client.put("/api/admin/feature-flags", json={"flagKey": "API_ACCESS", "rolloutPercentage": 150})
    assert resp.status_code == 422


def test_feature_flags_require_admin(client, login, member_user):
    login(member_user)
    assert client.get("/api/admin/feature-flags").status_code == 403


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


@pytest.fixture
def flags():
    return FeatureFlagService()


def test_hash_is_stable():
    assert hash_user_id("abc") == 96354
    assert hash_user_id("1") == 49
    assert hash_user_id("2") == 50


def test_disabled_and_unknown_flags(flags):
    assert flags.is_enabled("LOGO_UPLOAD")
    assert not flags.is_enabled("ADVANCED_ANALYTICS")
    assert not flags.is_enabled("DOES_NOT_EXIST")


def test_user_segment_gate(flags):
    assert flags.is_enabled("LOGO_UPLOAD", {"user_segment": "admin"})
    assert not flags.is_enabled("LOGO_UPLOAD", {"user_segment": "user"})


def test_rollout_percentage(flags):
    flags.update_flag("API_ACCESS", enabled=True, rollout_percentage=50)

    assert flags.is_enabled("API_ACCESS", {"user_id": "1"})
    assert not flags.is_enabled("API_ACCESS", {"user_id": "2"})
    # Without a user the percentage is not applied.
    assert flags.is_enabled("API_ACCESS")


def test_dependencies_must_be_enabled(flags):
    flags.update_flag("WHITE_LABEL_THEMES", dependencies=["ADVANCED_ANALYTICS"])
    assert not flags.is_enabled("WHITE_LABEL_THEMES")

    flags.update_flag("ADVANCED_ANALYTICS", enabled=True, rollout_percentage=100)
    assert flags.is_enabled("WHITE_LABEL_THEMES")


def test_reset_restores_defaults(flags):
    flags.update_flag("LOGO_UPLOAD", enabled=False)
    flags.reset()
    assert flags.get_flag("LOGO_UPLOAD").enabled is True


def test_segment_for(admin_user, member_user, super_admin):
    assert segment_for(admin_user) == "admin"
    assert segment_for(super_admin) == "admin"
    assert segment_for(member_user) == "user"
