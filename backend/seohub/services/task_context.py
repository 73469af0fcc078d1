"""Per-agency SEO work history used to ground the chat assistant.

Contexts are cached for five minutes (at most 100 agencies, least recently
used evicted first).  Order and onboarding writes call :func:`invalidate`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.models.models import Order
from seohub.services.seo_packages import SEO_PACKAGES

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_ENTRIES = 100

_ACTIVE_STATUSES = ("pending", "in_progress")


class _ContextCache:
    def __init__(self, ttl: float = CACHE_TTL_SECONDS, max_entries: int = CACHE_MAX_ENTRIES):
        self.ttl = ttl
        self.max_entries = max_entries
        self._items: "OrderedDict[int, tuple[Dict[str, Any], float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires < time.monotonic():
                del self._items[key]
                return None
            # Reads refresh both recency and age.
            self._items[key] = (value, time.monotonic() + self.ttl)
            self._items.move_to_end(key)
            return value

    def set(self, key: int, value: Dict[str, Any]) -> None:
        with self._lock:
            self._items[key] = (value, time.monotonic() + self.ttl)
            self._items.move_to_end(key)
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def delete(self, key: int) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


_cache = _ContextCache()


def get_task_context(db: Session, agency_id: int) -> Dict[str, Any]:
    completed = (
        db.query(Order)
        .filter(
            Order.agency_id == agency_id,
            Order.status == "completed",
            Order.page_title.isnot(None),
            Order.deleted_at.is_(None),
        )
        .order_by(Order.completed_at.desc())
        .limit(30)
        .all()
    )

    active_types = [
        row[0]
        for row in db.query(Order.task_type)
        .filter(Order.agency_id == agency_id, Order.status.in_(_ACTIVE_STATUSES), Order.deleted_at.is_(None))
        .distinct()
        .all()
    ]

    keywords: List[str] = []
    for order in completed:
        for keyword in order.keywords or []:
            if keyword not in keywords:
                keywords.append(keyword)
    keywords = keywords[:20]

    onboarding = crud.get_latest_onboarding(db, agency_id)
    package_type = onboarding.package if onboarding else "GOLD"
    limit = SEO_PACKAGES.get(package_type, SEO_PACKAGES["GOLD"])["totalTasks"]
    total_completed = (
        db.query(Order)
        .filter(Order.agency_id == agency_id, Order.status == "completed", Order.deleted_at.is_(None))
        .count()
    )

    return {
        "completedTasks": [
            {
                "title": order.page_title,
                "type": order.task_type,
                "url": order.content_url,
                "completedAt": order.completed_at.isoformat() if order.completed_at else None,
                "keywords": list(order.keywords or []),
            }
            for order in completed
        ],
        "activeTaskTypes": active_types,
        "packageInfo": {
            "type": package_type,
            "progress": round(min(100.0, total_completed / limit * 100)),
            "remainingTasks": max(0, limit - total_completed),
        },
        "recentKeywords": keywords,
        "dealershipInfo": (
            {
                "businessName": onboarding.business_name,
                "location": f"{onboarding.city}, {onboarding.state}",
                "mainBrand": onboarding.main_brand,
                "targetCities": list(onboarding.target_cities or []),
                "targetModels": list(onboarding.target_vehicle_models or []),
            }
            if onboarding
            else None
        ),
    }


def get_cached_task_context(db: Session, agency_id: int) -> Dict[str, Any]:
    cached = _cache.get(agency_id)
    if cached is not None:
        return cached
    context = get_task_context(db, agency_id)
    _cache.set(agency_id, context)
    return context


def invalidate(agency_id: Optional[int]) -> None:
    if agency_id is not None:
        _cache.delete(agency_id)
        logger.debug("Task context cache invalidated for agency %s", agency_id)


def clear_all() -> None:
    _cache.clear()


def cache_stats() -> Dict[str, int]:
    return {"size": len(_cache), "maxSize": _cache.max_entries, "ttlSeconds": int(_cache.ttl)}


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def format_task_context(context: Dict[str, Any]) -> str:
    lines: List[str] = []

    if context["completedTasks"]:
        lines.append("Recently Completed Content:")
        for task in context["completedTasks"][:10]:
            published = " - Published" if task.get("url") else ""
            lines.append(f"- {task['title']} ({task['type']}){published}")

    if context["activeTaskTypes"]:
        lines.append("\nCurrently Working On:")
        lines.extend(f"- {task_type} content" for task_type in context["activeTaskTypes"])

    if context["recentKeywords"]:
        lines.append("\nRecent Target Keywords:")
        lines.append(", ".join(context["recentKeywords"][:10]))

    package = context["packageInfo"]
    lines += [
        "\nPackage Status:",
        f"- {package['type']} Package",
        f"- Progress: {package['progress']}% complete",
        f"- Remaining tasks: {package['remainingTasks']}",
    ]
    return "\n".join(lines)


def build_enhanced_system_prompt(context: Dict[str, Any], base_prompt: str = "") -> str:
    dealership = context.get("dealershipInfo")
    package = context["packageInfo"]

    dealership_block = ""
    if dealership:
        rows = [
            "DEALERSHIP CONTEXT:",
            f"- Business: {dealership['businessName']}",
            f"- Location: {dealership['location']}",
            f"- Main Brand: {dealership['mainBrand']}",
            f"- Package: {package['type']}",
        ]
        if dealership["targetCities"]:
            rows.append(f"- Target Cities: {', '.join(dealership['targetCities'])}")
        if dealership["targetModels"]:
            rows.append(f"- Target Models: {', '.join(dealership['targetModels'])}")
        dealership_block = "\n".join(rows) + "\n\n"

    return (
        "You are Rylie, an expert SEO assistant for automotive dealerships.\n\n"
        f"{dealership_block}"
        "YOUR KNOWLEDGE OF THEIR SEO WORK:\n"
        f"{format_task_context(context)}\n\n"
        "INSTRUCTIONS:\n"
        "1. Reference completed content when relevant\n"
        "2. Avoid suggesting content that's already been created\n"
        f"3. Consider their package limits when making recommendations ({package['remainingTasks']} tasks remaining)\n"
        "4. Use their target cities and models in examples when applicable\n"
        "5. Be specific to their dealership and location\n"
        "6. If they ask about existing content, you can reference what you know\n\n"
        "Remember: You have access to their actual SEO work history, so provide informed, contextual advice.\n"
        f"{base_prompt}"
    ).rstrip() + "\n"
