"""Google Analytics 4 Data/Admin API client and response processing.

``GA4Service`` wraps the REST endpoints with ``httpx`` using a user's OAuth
access token.  HTTP failures are raised as :class:`GA4APIError` whose message
carries enough wording for the report executor to classify the failure
(authentication, permission, rate limit).
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from seohub.services.google_oauth import get_valid_access_token

logger = logging.getLogger(__name__)

DATA_API = "https://analyticsdata.googleapis.com/v1beta"
ADMIN_API = "https://analyticsadmin.googleapis.com/v1beta"

REPORT_METRICS = [
    "totalUsers",
    "newUsers",
    "sessions",
    "bounceRate",
    "averageSessionDuration",
    "conversions",
    "engagedSessions",
    "engagementRate",
    "screenPageViews",
    "screenPageViewsPerSession",
]


class GA4APIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _property_path(property_id: str) -> str:
    return property_id if property_id.startswith("properties/") else f"properties/{property_id}"


def _error_for(response: httpx.Response) -> GA4APIError:
    code = response.status_code
    if code == 401:
        message = "Authentication failed: GA4 token is invalid or expired"
    elif code == 403:
        message = "Access denied: insufficient permissions for GA4 property"
    elif code == 429:
        message = "GA4 API rate limit exceeded"
    else:
        message = f"GA4 API request failed with status {code}"
    return GA4APIError(message, code)


class GA4Service:
    """Thin GA4 REST client bound to one access token."""

    def __init__(self, access_token: str, *, user_id: Optional[int] = None, timeout: float = 30.0):
        self.access_token = access_token
        self.user_id = user_id
        self.timeout = timeout

    @classmethod
    def for_user(cls, db: Session, user_id: int) -> "GA4Service":
        return cls(get_valid_access_token(db, user_id, "ga4"), user_id=user_id)

    # HTTP -----------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            response = httpx.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as exc:
            raise GA4APIError(f"GA4 API request failed: {exc}") from exc
        if response.status_code >= 400:
            raise _error_for(response)
        return response.json()

    # Data API -------------------------------------------------------------

    def run_report(self, property_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"{DATA_API}/{_property_path(property_id)}:runReport", json=body)

    def fetch_report_data(self, property_id: str, start_date: str, end_date: str) -> Dict[str, Any]:
        """Aggregate metrics plus top pages and keywords for one date range."""

        date_ranges = [{"startDate": start_date, "endDate": end_date}]

        base = self.run_report(
            property_id,
            {
                "dateRanges": date_ranges,
                "metrics": [{"name": m} for m in REPORT_METRICS],
                "dimensions": [{"name": "sessionDefaultChannelGroup"}],
            },
        )
        result = process_report_response(base)

        pages = self.run_report(
            property_id,
            {
                "dateRanges": date_ranges,
                "dimensions": [{"name": "pagePath"}, {"name": "pageTitle"}],
                "metrics": [{"name": "sessions"}, {"name": "engagementRate"}, {"name": "conversions"}],
                "orderBys": [{"metric": {"metricName": "sessions"}, "desc": True}],
                "limit": 10,
            },
        )
        result["topPages"] = process_top_pages_response(pages)

        keywords = self.run_report(
            property_id,
            {
                "dateRanges": date_ranges,
                "dimensions": [{"name": "sessionManualTerm"}],
                "metrics": [{"name": "sessions"}],
                "orderBys": [{"metric": {"metricName": "sessions"}, "desc": True}],
                "limit": 10,
            },
        )
        result["topKeywords"] = process_top_keywords_response(keywords)
        return result

    # Admin API ------------------------------------------------------------

    def verify_property_access(self, property_id: str) -> bool:
        try:
            self._request("GET", f"{ADMIN_API}/{_property_path(property_id)}")
        except GA4APIError as exc:
            if exc.status_code in (403, 404):
                return False
            raise
        return True

    def list_properties(self) -> List[Dict[str, Any]]:
        """Flatten ``accountSummaries`` into one entry per property."""

        properties: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params = {"pageSize": 200}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", f"{ADMIN_API}/accountSummaries", params=params)
            for account in payload.get("accountSummaries", []):
                for prop in account.get("propertySummaries", []):
                    full_name = prop.get("property", "")
                    properties.append(
                        {
                            "id": full_name.split("/")[-1],
                            "name": prop.get("displayName"),
                            "fullName": full_name,
                            "accountId": account.get("account", "").split("/")[-1],
                            "accountName": account.get("displayName"),
                        }
                    )
            page_token = payload.get("nextPageToken")
            if not page_token:
                return properties


# ---------------------------------------------------------------------------
# Response processing
# ---------------------------------------------------------------------------


def _empty_report() -> Dict[str, Any]:
    return {
        "organicTraffic": 0,
        "organicSessions": 0,
        "totalUsers": 0,
        "newUsers": 0,
        "sessions": 0,
        "averageSessionDuration": "00:00:00",
        "bounceRate": 0,
        "conversions": 0,
        "topKeywords": [],
        "topPages": [],
        "goalCompletions": 0,
        "sessionsPerUser": 0,
        "screenPageViews": 0,
        "screenPageViewsPerSession": 0,
        "engagementRate": 0,
    }


def _format_duration(seconds: float) -> str:
    total = int(round(seconds))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


_SUMMED = {"totalUsers", "newUsers", "sessions", "conversions", "screenPageViews"}


def map_metric(result: Dict[str, Any], metric: str, raw: str, organic: bool = False) -> None:
    """Fold one metric value into *result*; counts accumulate across rows."""

    try:
        value = float(raw)
    except (TypeError, ValueError):
        return

    if metric in _SUMMED:
        result[metric] += value
        if organic and metric == "totalUsers":
            result["organicTraffic"] += value
        if organic and metric == "sessions":
            result["organicSessions"] += value
        if metric == "conversions":
            result["goalCompletions"] = result["conversions"]
    elif metric == "averageSessionDuration":
        if result["averageSessionDuration"] == "00:00:00":
            result["averageSessionDuration"] = _format_duration(value)
    elif metric in ("bounceRate", "engagementRate"):
        result[metric] = value


def process_report_response(report: Dict[str, Any]) -> Dict[str, Any]:
    result = _empty_report()
    headers = [h.get("name") for h in report.get("metricHeaders", [])]
    rows = report.get("rows") or []

    if not rows:
        totals = report.get("totals") or []
        if totals:
            for name, metric in zip(headers, totals[0].get("metricValues", [])):
                map_metric(result, name, metric.get("value"))
        return result

    for row in rows:
        dimensions = row.get("dimensionValues") or []
        organic = bool(dimensions) and dimensions[0].get("value") == "Organic Search"
        for name, metric in zip(headers, row.get("metricValues", [])):
            map_metric(result, name, metric.get("value"), organic)

    if result["sessions"] and result["totalUsers"]:
        result["sessionsPerUser"] = round(result["sessions"] / result["totalUsers"], 2)
    if result["sessions"] and result["screenPageViews"]:
        result["screenPageViewsPerSession"] = round(result["screenPageViews"] / result["sessions"], 2)
    return result


def _metric(row: Dict[str, Any], index: int) -> float:
    values = row.get("metricValues") or []
    try:
        return float(values[index].get("value", 0))
    except (IndexError, TypeError, ValueError):
        return 0.0


def _dimension(row: Dict[str, Any], index: int) -> str:
    values = row.get("dimensionValues") or []
    try:
        return values[index].get("value") or "(not set)"
    except IndexError:
        return "(not set)"


def process_top_pages_response(report: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {
            "pagePath": _dimension(row, 0),
            "pageTitle": _dimension(row, 1),
            "sessions": _metric(row, 0),
            "engagementRate": _metric(row, 1),
            "conversions": _metric(row, 2),
        }
        for row in report.get("rows") or []
    ]


def process_top_keywords_response(report: Dict[str, Any]) -> List[Dict[str, Any]]:
    keywords = []
    for row in report.get("rows") or []:
        keyword = _dimension(row, 0)
        if keyword.lower() in ("(not set)", "(not provided)"):
            continue
        keywords.append({"keyword": keyword, "sessions": _metric(row, 0)})
    return keywords
