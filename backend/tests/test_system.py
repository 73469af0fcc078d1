def test_root(client):
    assert client.get("/").json() == {"message": "Rylie SEO Hub API"}


def test_health_is_healthy(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == "1.0.0"
    assert body["checks"] == {"database": True, "auth": True, "features": {"requestsTerminology": True}}


def test_health_degrades_when_database_fails(client, db_session, monkeypatch):
    from seohub.routers import system

    monkeypatch.setattr(system, "check_connection", lambda db: False)

    resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"


def test_logo_upload(client, login, admin_user, static_dirs):
    login(admin_user)

    resp = client.post("/api/upload", files={"file": ("logo.png", b"\x89PNG fake", "image/png")})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["format"] == "png"
    assert body["bytes"] == 9
    assert body["publicId"].startswith("logos/")
    assert body["url"].startswith("http://localhost:8000/static/uploads/logos/")
    assert len(list((static_dirs / "uploads" / "logos").iterdir())) == 1


def test_logo_upload_rejects_other_types(client, login, admin_user):
    login(admin_user)

    resp = client.post("/api/upload", files={"file": ("logo.gif", b"GIF89a", "image/gif")})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid file type")
