"""Centralised configuration helper.

Every environment lookup goes through a **single** process-wide
:class:`Settings` instance (retrieved via :func:`get_settings`) so route
handlers and services never call ``os.getenv`` directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` points to the top-level repository directory.  This file is
# located at ``backend/seohub/config/__init__.py``.

_REPO_ROOT = Path(__file__).resolve().parents[3]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    auth_disabled: bool

    # Secrets & IDs -----------------------------------------------------
    jwt_secret: str
    google_client_id: Any
    google_client_secret: Any

    # Database ---------------------------------------------------------
    database_url: str

    # Cryptography -----------------------------------------------------
    fernet_secret: Any

    # Misc
    dev_admin: bool
    log_level: str
    environment: Any
    app_version: str
    allowed_cors_origins: str
    admin_emails: str  # comma-separated list

    # Public URL --------------------------------------------------------
    app_url: str

    # OpenRouter --------------------------------------------------------
    openrouter_api_key: Any
    openrouter_base_url: str
    default_ai_model: str

    # SEOWorks ----------------------------------------------------------
    seoworks_api_key: Any
    seoworks_api_url: str
    seoworks_mock_mode: bool
    seoworks_webhook_secret: Any
    onboarding_webhook_url: Any
    seowerks_onboarding_url: str

    # Report scheduling -------------------------------------------------
    report_trigger_secret: Any
    report_scheduler_enabled: bool

    # E-mail (Mailgun) --------------------------------------------------
    mailgun_api_key: Any
    mailgun_domain: Any
    email_from_address: str

    @property
    def admin_email_set(self) -> set[str]:
        return {e.strip().lower() for e in (self.admin_emails or "").split(",") if e.strip()}

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover – test util
        for key, value in kwargs.items():
            if not hasattr(self, key):  # pragma: no cover – safety
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


# ---------------------------------------------------------------------------
# Singleton accessor – values loaded only once per interpreter
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    env_path = _REPO_ROOT / ".env"
    if env_path.exists():
        # Variables already exported by the shell (or the test-suite) win.
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))

    return Settings(
        testing=testing,
        auth_disabled=_truthy(os.getenv("AUTH_DISABLED")),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./seohub.db"),
        fernet_secret=os.getenv("FERNET_SECRET"),
        dev_admin=_truthy(os.getenv("DEV_ADMIN")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        environment=os.getenv("ENVIRONMENT"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", ""),
        admin_emails=os.getenv("ADMIN_EMAILS", ""),
        app_url=os.getenv("APP_URL", "http://localhost:8000").rstrip("/"),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
        openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        default_ai_model=os.getenv("DEFAULT_AI_MODEL", "openai/gpt-4o"),
        seoworks_api_key=os.getenv("SEOWORKS_API_KEY"),
        seoworks_api_url=os.getenv("SEOWORKS_API_URL", "https://api.seoworks.com/v1"),
        seoworks_mock_mode=_truthy(os.getenv("SEOWORKS_MOCK_MODE")),
        seoworks_webhook_secret=os.getenv("SEOWORKS_WEBHOOK_SECRET"),
        onboarding_webhook_url=os.getenv("ONBOARDING_WEBHOOK_URL"),
        seowerks_onboarding_url=os.getenv("SEOWERKS_ONBOARDING_URL", "https://start.seowerks.ai/"),
        report_trigger_secret=os.getenv("REPORT_TRIGGER_SECRET"),
        report_scheduler_enabled=_truthy(os.getenv("REPORT_SCHEDULER_ENABLED")),
        mailgun_api_key=os.getenv("MAILGUN_API_KEY"),
        mailgun_domain=os.getenv("MAILGUN_DOMAIN"),
        email_from_address=os.getenv("EMAIL_FROM_ADDRESS", "Rylie SEO Hub Reports <noreply@example.com>"),
    )


# Cached instance -----------------------------------------------------------

_settings_cache: Settings | None = None


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return **singleton** :class:`Settings` instance."""

    global _settings_cache  # noqa: PLW0603 – module-level cache

    if _settings_cache is None:
        _settings_cache = _load_settings()
        _validate_required(_settings_cache)

    return _settings_cache


def _validate_required(settings: Settings) -> None:  # noqa: D401 – helper
    """Abort start-up when mandatory configuration is missing."""

    if settings.testing:
        return

    missing: list[str] = []

    if settings.jwt_secret.strip() in {"", "dev-secret"} and not settings.auth_disabled:
        missing.append("JWT_SECRET")

    if not settings.google_client_id and not settings.auth_disabled:
        missing.append("GOOGLE_CLIENT_ID")

    if not settings.fernet_secret:
        missing.append("FERNET_SECRET")

    if not os.getenv("DATABASE_URL"):
        missing.append("DATABASE_URL")

    if missing:
        raise RuntimeError("Missing required environment variables: " + ", ".join(missing))


__all__ = ["Settings", "get_settings"]
