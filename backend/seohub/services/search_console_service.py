"""Google Search Console REST client."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from urllib.parse import quote

import httpx
from sqlalchemy.orm import Session

from seohub.services.google_oauth import get_valid_access_token
from seohub.utils.time import utc_now

API_BASE = "https://www.googleapis.com/webmasters/v3"


class SearchConsoleError(Exception):
    pass


def _window(days: int) -> tuple[str, str]:
    end = utc_now().date()
    start = end - timedelta(days=days)
    return start.isoformat(), end.isoformat()


class SearchConsoleService:
    def __init__(self, access_token: str, *, timeout: float = 30.0):
        self.access_token = access_token
        self.timeout = timeout

    @classmethod
    def for_user(cls, db: Session, user_id: int) -> "SearchConsoleService":
        return cls(get_valid_access_token(db, user_id, "search_console"))

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            response = httpx.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SearchConsoleError(f"Search Console request failed: {exc}") from exc
        return response.json()

    def list_sites(self) -> List[Dict[str, Any]]:
        return self._request("GET", f"{API_BASE}/sites").get("siteEntry", [])

    def get_search_analytics(
        self,
        site_url: str,
        *,
        start_date: str,
        end_date: str,
        dimensions: Optional[List[str]] = None,
        search_type: str = "web",
        row_limit: int = 1000,
        filters: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "startDate": start_date,
            "endDate": end_date,
            "dimensions": dimensions or ["query", "page"],
            "searchType": search_type,
            "rowLimit": row_limit,
        }
        if filters:
            body["dimensionFilterGroups"] = filters
        url = f"{API_BASE}/sites/{quote(site_url, safe='')}/searchAnalytics/query"
        return self._request("POST", url, json=body)

    def get_top_queries(self, site_url: str, days: int = 28) -> Dict[str, Any]:
        start, end = _window(days)
        return self.get_search_analytics(site_url, start_date=start, end_date=end, dimensions=["query"], row_limit=100)

    def get_top_pages(self, site_url: str, days: int = 28) -> Dict[str, Any]:
        start, end = _window(days)
        return self.get_search_analytics(site_url, start_date=start, end_date=end, dimensions=["page"], row_limit=100)

    def get_performance(self, site_url: str, days: int = 28) -> Dict[str, Any]:
        start, end = _window(days)
        return self.get_search_analytics(site_url, start_date=start, end_date=end, dimensions=["date"])
