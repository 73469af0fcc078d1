"""SEO package definitions and per-agency delivery progress."""

from __future__ import annotations

from typing import Any
from typing import Dict

from sqlalchemy.orm import Session

from seohub.models.models import Order

SEO_PACKAGES: Dict[str, Dict[str, Any]] = {
    "SILVER": {
        "name": "Silver",
        "limits": {"pages": 5, "blogs": 8, "gbpPosts": 15, "seoAudits": 1, "maintenance": 4},
        "totalTasks": 33,
        "monthlyValue": 2500,
    },
    "GOLD": {
        "name": "Gold",
        "limits": {"pages": 9, "blogs": 12, "gbpPosts": 20, "seoAudits": 2, "maintenance": 6},
        "totalTasks": 49,
        "monthlyValue": 4000,
    },
    "PLATINUM": {
        "name": "Platinum",
        "limits": {"pages": 12, "blogs": 16, "gbpPosts": 33, "seoAudits": 4, "maintenance": 12},
        "totalTasks": 77,
        "monthlyValue": 6500,
    },
}

_TASK_CATEGORY = {
    "page": "pages",
    "blog": "blogs",
    "gbp": "gbpPosts",
    "seo": "seoAudits",
    "seo_audit": "seoAudits",
    "maintenance": "maintenance",
}


def package_category(task_type: str) -> str:
    return _TASK_CATEGORY.get(task_type, "pages")


def calculate_package_progress(db: Session, agency_id: int, package_type: str) -> Dict[str, Any]:
    """Completed-order counts per category against the package's limits."""

    package = SEO_PACKAGES[package_type]

    rows = (
        db.query(Order.task_type)
        .filter(Order.agency_id == agency_id, Order.status == "completed", Order.deleted_at.is_(None))
        .all()
    )

    counts: Dict[str, int] = {}
    for (task_type,) in rows:
        category = package_category(task_type)
        counts[category] = counts.get(category, 0) + 1

    category_progress = []
    for category, limit in package["limits"].items():
        completed = counts.get(category, 0)
        category_progress.append(
            {
                "category": category,
                "completed": completed,
                "total": limit,
                "percentage": min(100.0, completed / limit * 100),
                "remaining": max(0, limit - completed),
            }
        )

    total_completed = sum(counts.values())
    return {
        "package": package_type,
        "totalCompleted": total_completed,
        "totalTasks": package["totalTasks"],
        "overallPercentage": total_completed / package["totalTasks"] * 100,
        "categoryProgress": category_progress,
        "activeTasks": package["totalTasks"] - total_completed,
    }
