"""Dashboard aggregation of GA4 and Search Console data, and its exports."""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import date
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.services.ga4_service import GA4Service
from seohub.services.search_console_service import SearchConsoleService

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("pdf", "csv", "json")


class ExportNotAvailable(Exception):
    pass


def _int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _metric(row: Dict[str, Any], index: int) -> Any:
    values = row.get("metricValues") or []
    return values[index].get("value") if index < len(values) else None


def _dimension(row: Dict[str, Any], index: int = 0) -> str:
    values = row.get("dimensionValues") or []
    return values[index].get("value", "") if index < len(values) else ""


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


def fetch_ga4_metrics(db: Session, agency_id: int, start: date, end: date) -> Optional[Dict[str, Any]]:
    agency = crud.get_agency(db, agency_id)
    if agency is None or not agency.ga4_property_id:
        return None
    admin = next((u for u in crud.get_agency_admins(db, agency_id) if crud.get_ga4_token(db, u.id)), None)
    if admin is None:
        return None

    ga4 = GA4Service.for_user(db, admin.id)
    date_ranges = [{"startDate": start.isoformat(), "endDate": end.isoformat()}]

    def report(metrics: List[str], dimension: str, limit: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "dateRanges": date_ranges,
            "metrics": [{"name": m} for m in metrics],
            "dimensions": [{"name": dimension}],
        }
        if limit:
            body["limit"] = limit
        return ga4.run_report(agency.ga4_property_id, body)

    return {
        "traffic": report(["sessions", "totalUsers", "bounceRate"], "date"),
        "content": report(["sessions", "averageSessionDuration"], "pagePath", limit=10),
        "conversions": report(["conversions"], "sessionDefaultChannelGroup"),
    }


def fetch_search_console_metrics(db: Session, agency_id: int, start: date, end: date) -> Optional[Dict[str, Any]]:
    for admin in crud.get_agency_admins(db, agency_id):
        token = crud.get_search_console_token(db, admin.id)
        if token is not None and token.primary_site:
            service = SearchConsoleService.for_user(db, admin.id)
            return service.get_search_analytics(
                token.primary_site,
                start_date=start.isoformat(),
                end_date=end.isoformat(),
                dimensions=["query"],
                row_limit=100,
            )
    return None


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def calculate_traffic_metrics(ga4: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Daily rows split in half: the later half is *current*, the earlier *previous*."""

    rows = (ga4 or {}).get("traffic", {}).get("rows") or []
    trend = [_int(_metric(row, 0)) for row in rows]
    half = len(trend) // 2
    current = sum(trend[half:])
    previous = sum(trend[:half])
    change = (current - previous) / previous * 100 if previous > 0 else 0
    return {"current": current, "previous": previous, "change": change, "trend": trend}


def calculate_search_metrics(search: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    rows = (search or {}).get("rows") or []
    if not rows:
        return {"clicks": 0, "impressions": 0, "ctr": 0, "position": 0, "topQueries": []}

    clicks = sum(row.get("clicks", 0) or 0 for row in rows)
    impressions = sum(row.get("impressions", 0) or 0 for row in rows)
    weighted = sum((row.get("position", 0) or 0) * (row.get("impressions", 0) or 0) for row in rows)

    top = sorted(rows, key=lambda r: r.get("clicks", 0) or 0, reverse=True)[:10]
    return {
        "clicks": clicks,
        "impressions": impressions,
        "ctr": clicks / impressions * 100 if impressions else 0,
        "position": weighted / impressions if impressions else 0,
        "topQueries": [{"query": (row.get("keys") or [""])[0], "clicks": row.get("clicks", 0)} for row in top],
    }


def calculate_content_metrics(ga4: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not ga4 or not ga4.get("content"):
        return {"topPages": [], "avgTimeOnPage": 0, "bounceRate": 0}

    rows = ga4["content"].get("rows") or []
    traffic_rows = ga4.get("traffic", {}).get("rows") or []
    return {
        "topPages": [{"page": _dimension(row), "views": _int(_metric(row, 0))} for row in rows[:10]],
        "avgTimeOnPage": sum(_float(_metric(row, 1)) for row in rows) / (len(rows) or 1),
        "bounceRate": _float(_metric(traffic_rows[0], 2)) if traffic_rows else 0,
    }


def calculate_conversion_metrics(ga4: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not ga4 or not ga4.get("conversions"):
        return {"total": 0, "rate": 0, "bySource": {}}

    by_source = {_dimension(row): _int(_metric(row, 0)) for row in ga4["conversions"].get("rows") or []}
    total = sum(by_source.values())
    sessions = sum(_int(_metric(row, 0)) for row in ga4.get("traffic", {}).get("rows") or [])
    return {"total": total, "rate": total / sessions * 100 if sessions else 0, "bySource": by_source}


def aggregate_reporting_data(db: Session, agency_id: int, start: date, end: date) -> Dict[str, Any]:
    ga4 = fetch_ga4_metrics(db, agency_id, start, end)
    search = fetch_search_console_metrics(db, agency_id, start, end)
    return {
        "traffic": calculate_traffic_metrics(ga4),
        "search": calculate_search_metrics(search),
        "content": calculate_content_metrics(ga4),
        "conversions": calculate_conversion_metrics(ga4),
    }


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def generate_csv_report(data: Dict[str, Any]) -> str:
    traffic = data.get("traffic") or {}
    search = data.get("search") or {}
    content = data.get("content") or {}
    conversions = data.get("conversions") or {}

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(
        [
            ["Metric", "Value", "Change"],
            ["Total Traffic", traffic.get("current") or 0, f"{_float(traffic.get('change')):.1f}%"],
            ["Search Clicks", search.get("clicks") or 0, ""],
            ["Average Position", f"{_float(search.get('position')):.1f}", ""],
            ["CTR", f"{_float(search.get('ctr')):.2f}%", ""],
            ["Conversions", conversions.get("total") or 0, ""],
            ["Conversion Rate", f"{_float(conversions.get('rate')):.2f}%", ""],
            ["Bounce Rate", f"{content.get('bounceRate') or 0}%", ""],
            [],
            ["Top Queries", "Clicks"],
        ]
    )
    writer.writerows([q.get("query", ""), q.get("clicks", 0)] for q in search.get("topQueries") or [])
    writer.writerow([])
    writer.writerow(["Top Pages", "Views"])
    writer.writerows([p.get("page", ""), p.get("views", 0)] for p in content.get("topPages") or [])
    return buffer.getvalue().rstrip("\n")


def export_report(data: Dict[str, Any], fmt: str) -> str:
    if fmt == "pdf":
        raise ExportNotAvailable("PDF export is not available yet. Please use CSV or JSON format.")
    if fmt == "csv":
        return generate_csv_report(data)
    if fmt == "json":
        return json.dumps(data, indent=2)
    raise ValueError("Invalid format. Use pdf, csv, or json")
