"""HTML rendering and storage of scheduled GA4 reports."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Optional

from jinja2 import Environment
from jinja2 import FileSystemLoader
from jinja2 import TemplateError
from jinja2 import select_autoescape

from seohub.config import get_settings
from seohub.constants import STATIC_DIR
from seohub.utils.time import utc_now

logger = logging.getLogger(__name__)

TEMPLATE_TITLES: Dict[str, str] = {
    "WeeklySummary": "Weekly SEO Summary",
    "MonthlyReport": "Monthly SEO Report",
    "QuarterlyBusinessReview": "Quarterly Business Review",
}

DEFAULT_BRANDING: Dict[str, Any] = {
    "agencyName": "Your Agency",
    "reportTitle": "SEO Performance Report",
}

# Rendered reports are served from ``/static/reports``.
REPORTS_DIR = STATIC_DIR / "reports"

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class ReportGenerationError(Exception):
    pass


def _format_number(value: Any) -> str:
    if not isinstance(value, (int, float)):
        return "0"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _format_percentage(value: Any) -> str:
    if not isinstance(value, (int, float)) or not value:
        return "N/A"
    return f"{value * 100:.2f}%"


_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html", "j2")),
)
_env.filters["number"] = _format_number
_env.filters["percentage"] = _format_percentage


class ReportGenerator:
    def __init__(self, branding_options: Optional[Dict[str, Any]] = None):
        self.branding = {**DEFAULT_BRANDING, **{k: v for k, v in (branding_options or {}).items() if v}}

    def generate_html(self, report_type: str, data: Dict[str, Any], date_range: Dict[str, str]) -> str:
        template_type = TEMPLATE_TITLES.get(report_type, TEMPLATE_TITLES["WeeklySummary"])
        try:
            return _env.get_template("report.html.j2").render(
                data=data,
                branding=self.branding,
                template_type=template_type,
                date_range=date_range,
                current_date=utc_now().strftime("%m/%d/%Y"),
            )
        except TemplateError as exc:
            logger.error("Rendering %s failed: %s", template_type, exc)
            raise ReportGenerationError(f"Failed to generate HTML report: {exc}") from exc


def store_report(html: str, *, agency_id: int, schedule_id: Optional[int] = None) -> str:
    """Persist *html* under :data:`REPORTS_DIR` and return its public URL."""

    REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    prefix = f"schedule-{schedule_id}" if schedule_id is not None else "adhoc"
    filename = f"agency-{agency_id}-{prefix}-{uuid.uuid4().hex}.html"
    (REPORTS_DIR / filename).write_text(html, encoding="utf-8")
    return f"{get_settings().app_url}/static/reports/{filename}"
