import os

# Settings are read once at import time; pin the test environment first.
os.environ["TESTING"] = "1"
os.environ["AUTH_DISABLED"] = "1"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["FERNET_SECRET"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["SEOWORKS_API_KEY"] = "test-seoworks-key"
os.environ["REPORT_TRIGGER_SECRET"] = "test-trigger-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ADMIN_EMAILS"] = ""
os.environ.pop("MAILGUN_API_KEY", None)
os.environ.pop("OPENROUTER_API_KEY", None)
os.environ.pop("ONBOARDING_WEBHOOK_URL", None)
os.environ.pop("GOOGLE_CLIENT_ID", None)
os.environ.pop("GOOGLE_CLIENT_SECRET", None)
os.environ.pop("REPORT_SCHEDULER_ENABLED", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import seohub.database as _db_mod  # noqa: E402
from seohub.crud import crud  # noqa: E402
from seohub.database import Base  # noqa: E402
from seohub.database import get_db  # noqa: E402
from seohub.database import make_engine  # noqa: E402
from seohub.database import make_sessionmaker  # noqa: E402
from seohub.dependencies.auth import get_current_user  # noqa: E402
from seohub.services import report_generator  # noqa: E402
from seohub.services import task_context  # noqa: E402
from seohub.services import upload_service  # noqa: E402
from seohub.services.feature_flags import feature_flags  # noqa: E402

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

test_engine = make_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = make_sessionmaker(test_engine)

# Background tasks and the SSE stream open their own sessions through
# get_session_factory(); point them at the test database.
_db_mod.default_session_factory = TestingSessionLocal

from seohub.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def reset_in_memory_state():
    """Feature flags and the task-context cache are process-wide singletons."""

    feature_flags.reset()
    task_context.clear_all()
    yield
    feature_flags.reset()
    task_context.clear_all()


@pytest.fixture(autouse=True)
def static_dirs(tmp_path, monkeypatch):
    """Keep generated reports and uploads out of the repository tree."""

    monkeypatch.setattr(report_generator, "REPORTS_DIR", tmp_path / "reports")
    monkeypatch.setattr(upload_service, "UPLOADS_DIR", tmp_path / "uploads")
    yield tmp_path


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def test_session_factory(db_session):
    """Session factory handing out the test session (for services that open their own)."""

    def get_test_session():
        return db_session

    return get_test_session


@pytest.fixture
def client(db_session):
    """
    Create a FastAPI TestClient with the test database dependency.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app, backend="asyncio")
    yield client

    app.dependency_overrides = {}


@pytest.fixture
def login():
    """Make every request act as the given user row."""

    def _login(user):
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login


# ---------------------------------------------------------------------------
# Sample rows
# ---------------------------------------------------------------------------


@pytest.fixture
def agency(db_session):
    return crud.create_agency(db_session, name="Acme Motors", slug="acme-motors")


@pytest.fixture
def other_agency(db_session):
    return crud.create_agency(db_session, name="Other Auto", slug="other-auto")


@pytest.fixture
def admin_user(db_session, agency):
    return crud.create_user(db_session, email="admin@acme.test", name="Ada Admin", role="ADMIN", agency_id=agency.id)


@pytest.fixture
def member_user(db_session, agency):
    return crud.create_user(db_session, email="member@acme.test", name="Max Member", agency_id=agency.id)


@pytest.fixture
def super_admin(db_session):
    return crud.create_user(db_session, email="root@seohub.test", name="Root", role="ADMIN", is_super_admin=True)


@pytest.fixture
def schedule(db_session, agency, admin_user):
    return crud.create_schedule(
        db_session,
        agency_id=agency.id,
        user_id=admin_user.id,
        cron_pattern="0 9 * * 1",
        ga4_property_id="123456",
        report_type="WeeklySummary",
        email_recipients=["owner@acme.test"],
    )


# ---------------------------------------------------------------------------
# Outbound integrations
# ---------------------------------------------------------------------------


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture every message handed to the e-mail service."""

    from seohub.services import email_service

    outbox = []

    def _send_email(*, to, subject, html, text=None):
        outbox.append({"to": [to] if isinstance(to, str) else list(to), "subject": subject, "html": html})
        return {"success": True, "id": f"msg-{len(outbox)}"}

    monkeypatch.setattr(email_service, "send_email", _send_email)
    return outbox


@pytest.fixture
def fake_ga4(monkeypatch):
    """Replace the GA4 client used for report generation.

    Tweak ``property_access`` or set ``error`` on the returned class to drive
    failure paths.
    """

    from seohub.services import report_executor
    from seohub.services.ga4_service import process_report_response

    class FakeGA4Service:
        property_access = True
        error = None
        fetches = []

        def __init__(self, access_token="fake-token", *, user_id=None):
            self.user_id = user_id

        @classmethod
        def for_user(cls, db, user_id):
            return cls(user_id=user_id)

        def verify_property_access(self, property_id):
            return type(self).property_access

        def fetch_report_data(self, property_id, start_date, end_date):
            type(self).fetches.append((property_id, start_date, end_date))
            if type(self).error is not None:
                raise type(self).error
            data = process_report_response(
                {
                    "metricHeaders": [{"name": "sessions"}, {"name": "totalUsers"}],
                    "rows": [
                        {
                            "dimensionValues": [{"value": "Organic Search"}],
                            "metricValues": [{"value": "120"}, {"value": "80"}],
                        }
                    ],
                }
            )
            data["topKeywords"] = [{"keyword": "used trucks", "sessions": 42.0}]
            return data

    monkeypatch.setattr(report_executor, "GA4Service", FakeGA4Service)
    return FakeGA4Service


@pytest.fixture
def ga4_token(db_session, admin_user):
    """Stored (opaque) GA4 credentials for the schedule owner."""

    return crud.upsert_ga4_token(db_session, user_id=admin_user.id, encrypted_access_token="stored")
