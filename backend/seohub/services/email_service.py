"""Outbound e-mail through the Mailgun HTTP API.

When ``MAILGUN_API_KEY``/``MAILGUN_DOMAIN`` are not configured (local
development, CI) messages are logged and reported as *simulated* instead of
being sent.  Tests monkey-patch :func:`send_email` to capture messages.
"""

from __future__ import annotations

import logging
from html import escape
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import httpx

from seohub.config import get_settings
from seohub.constants import DEFAULT_COMPANY_NAME

logger = logging.getLogger(__name__)

MAILGUN_API_BASE = "https://api.mailgun.net/v3"


class EmailDeliveryError(RuntimeError):
    """Raised when the e-mail provider rejects or cannot receive a message."""


def send_email(*, to: List[str] | str, subject: str, html: str, text: Optional[str] = None) -> Dict[str, Any]:
    """Send one message to *to*; returns ``{"success": True, "id": ...}``."""

    settings = get_settings()
    recipients = [to] if isinstance(to, str) else list(to)

    if not settings.mailgun_api_key or not settings.mailgun_domain:
        logger.info("Mailgun not configured, skipping e-mail %r to %s", subject, ", ".join(recipients))
        return {"success": True, "id": None, "simulated": True}

    data = {
        "from": settings.email_from_address,
        "to": recipients,
        "subject": subject,
        "html": html,
    }
    if text:
        data["text"] = text

    try:
        response = httpx.post(
            f"{MAILGUN_API_BASE}/{settings.mailgun_domain}/messages",
            auth=("api", settings.mailgun_api_key),
            data=data,
            timeout=15.0,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Mailgun delivery of %r failed: %s", subject, exc)
        raise EmailDeliveryError(f"Failed to send email: {exc}") from exc

    payload = response.json()
    return {"success": True, "id": payload.get("id")}


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def send_report_email(*, recipients: List[str], report_type: str, report_url: str, agency_name: Optional[str]):
    company = agency_name or DEFAULT_COMPANY_NAME
    html = (
        f"<h1>Your {escape(report_type)} Report is Ready</h1>"
        f"<p>Your scheduled SEO report from {escape(company)} has been generated.</p>"
        f'<p><a href="{escape(report_url)}">View the report</a></p>'
    )
    return send_email(to=recipients, subject=f"Your {report_type} Report is Ready", html=html)


def send_failure_alert(*, recipients: List[str], report_type: str, error: str, error_code: str, paused: bool):
    html = (
        f"<h2>Report Generation Failed</h2>"
        f"<p>The scheduled {escape(report_type)} report could not be generated.</p>"
        f"<p><strong>Error:</strong> {escape(error)}</p>"
        f"<p><strong>Error code:</strong> {escape(error_code)}</p>"
    )
    if paused:
        html += "<p>The schedule has been paused. Resume it from the report settings once the issue is fixed.</p>"
    return send_email(to=recipients, subject=f"[ALERT] Report Generation Failed - {report_type}", html=html)


def send_invite_email(*, to: str, invite_url: str, inviter: Optional[str], agency_name: Optional[str]):
    company = agency_name or DEFAULT_COMPANY_NAME
    html = (
        f"<h1>You're invited to {escape(company)}</h1>"
        f"<p>{escape(inviter or 'An administrator')} invited you to join {escape(company)}.</p>"
        f'<p><a href="{escape(invite_url)}">Accept the invitation</a></p>'
        "<p>This invitation expires in 7 days.</p>"
    )
    return send_email(to=to, subject=f"Welcome to {company}!", html=html)
