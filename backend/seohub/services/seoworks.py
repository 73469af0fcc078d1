"""SEOWorks fulfilment partner: API client, webhook processing and task assignment.

The client runs in *mock mode* when no ``SEOWORKS_API_KEY`` is configured or
``SEOWORKS_MOCK_MODE`` is set; mock calls return synthetic ids without any
network traffic.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.models.enums import OrderStatus
from seohub.models.models import Order
from seohub.models.models import SEOWorksTask
from seohub.services import task_context
from seohub.utils.log import get_logger
from seohub.utils.time import to_naive_utc
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

SYSTEM_EMAIL = "seoworks-api@system"
MOCK_ASSIGNEE = "mock-team@seoworks.com"
DEFAULT_ASSIGNEE = "SEO WORKS Team"

TASK_TYPES: List[Dict[str, Any]] = [
    {"id": "blog", "name": "Blog Post", "description": "SEO-optimized blog post creation", "estimatedHours": 4},
    {
        "id": "page",
        "name": "Page Content",
        "description": "Website page content creation and optimization",
        "estimatedHours": 6,
    },
    {"id": "gbp", "name": "Google Business Profile", "description": "Google Business Profile optimization", "estimatedHours": 3},
    {"id": "maintenance", "name": "Site Maintenance", "description": "Website maintenance and updates", "estimatedHours": 2},
    {"id": "seo", "name": "SEO Optimization", "description": "SEO audit, strategy, and optimization", "estimatedHours": 8},
]

_CATEGORY_BY_TASK_TYPE = {
    "blog": "Content Creation",
    "page": "Content Creation",
    "gbp": "Local SEO",
    "maintenance": "Technical SEO",
    "seo": "SEO Optimization",
    "seo_audit": "SEO Audit",
}

ASSIGNMENT_RULES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "PLATINUM": {
        "blog": {"priority": "high", "defaultHours": 4, "turnaround": "2-3 days"},
        "page": {"priority": "high", "defaultHours": 6, "turnaround": "3-5 days"},
        "gbp": {"priority": "high", "defaultHours": 2, "turnaround": "1-2 days"},
        "seo": {"priority": "high", "defaultHours": 8, "turnaround": "5-7 days"},
        "maintenance": {"priority": "medium", "defaultHours": 2, "turnaround": "1-2 days"},
    },
    "GOLD": {
        "blog": {"priority": "medium", "defaultHours": 3, "turnaround": "3-5 days"},
        "page": {"priority": "medium", "defaultHours": 5, "turnaround": "5-7 days"},
        "gbp": {"priority": "high", "defaultHours": 2, "turnaround": "2-3 days"},
        "seo": {"priority": "medium", "defaultHours": 6, "turnaround": "7-10 days"},
        "maintenance": {"priority": "low", "defaultHours": 1, "turnaround": "2-3 days"},
    },
    "SILVER": {
        "blog": {"priority": "low", "defaultHours": 2, "turnaround": "5-7 days"},
        "page": {"priority": "low", "defaultHours": 4, "turnaround": "7-10 days"},
        "gbp": {"priority": "medium", "defaultHours": 1, "turnaround": "3-5 days"},
        "seo": {"priority": "low", "defaultHours": 4, "turnaround": "10-14 days"},
        "maintenance": {"priority": "low", "defaultHours": 1, "turnaround": "3-5 days"},
    },
}

_DEFAULT_RULE = {"priority": "medium", "defaultHours": 3, "turnaround": "5-7 days"}


class SEOWorksError(Exception):
    """SEOWorks API failure or an order that cannot be assigned."""


def map_task_type_to_category(task_type: Optional[str]) -> str:
    return _CATEGORY_BY_TASK_TYPE.get(task_type or "", "Other")


def get_assignment_rules(package: Optional[str], task_type: Optional[str]) -> Dict[str, Any]:
    return dict(ASSIGNMENT_RULES.get(package or "", {}).get(task_type or "", _DEFAULT_RULE))


def extract_deliverable_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise the ``deliverables`` list and legacy ``postTitle``/``postUrl`` shapes."""

    deliverables = payload.get("deliverables")
    if isinstance(deliverables, list):
        first = deliverables[0] if deliverables else {}
        return {
            "pageTitle": first.get("title"),
            "contentUrl": first.get("url"),
            "allDeliverables": deliverables,
        }

    if payload.get("postTitle") or payload.get("postUrl"):
        return {
            "pageTitle": payload.get("postTitle"),
            "contentUrl": payload.get("postUrl"),
            "allDeliverables": [{"type": "content", "title": payload.get("postTitle"), "url": payload.get("postUrl")}],
        }

    return {"pageTitle": None, "contentUrl": None, "allDeliverables": []}


def validate_webhook_signature(payload: bytes | str, signature: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 *signature* over *payload*."""

    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip().lower(), expected)


def check_api_key(provided: Optional[str]) -> bool:
    expected = get_settings().seoworks_api_key
    return bool(provided) and bool(expected) and hmac.compare_digest(provided, expected)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


class SEOWorksClient:
    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, mock_mode: Optional[bool] = None):
        settings = get_settings()
        self.api_url = (api_url or settings.seoworks_api_url).rstrip("/")
        self.api_key = api_key or settings.seoworks_api_key or ""
        if mock_mode is None:
            mock_mode = not self.api_key or settings.seoworks_mock_mode
        self.mock_mode = mock_mode

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}", "X-API-Version": "1.0"}
        try:
            response = httpx.request(method, f"{self.api_url}{path}", headers=headers, timeout=30.0, **kwargs)
        except httpx.HTTPError as exc:
            raise SEOWorksError(f"SEO Works API error: {exc}") from exc
        if response.status_code >= 400:
            raise SEOWorksError(f"SEO Works API error: {response.status_code} - {response.text}")
        return response.json()

    def create_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        if self.mock_mode:
            logger.info("SEO Works mock mode: creating task %s", task.get("task_id"))
            return {
                "taskId": f"mock-{int(time.time() * 1000)}-{secrets.token_hex(4)}",
                "assignedTo": MOCK_ASSIGNEE,
            }
        data = self._request("POST", "/tasks", json=task)
        logger.info("SEO Works task created: %s", data.get("taskId"))
        return {"taskId": data.get("taskId"), "assignedTo": data.get("assignedTo")}

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        if self.mock_mode:
            return {"status": "in_progress", "progress": 65, "assignedTo": MOCK_ASSIGNEE}
        data = self._request("GET", f"/tasks/{task_id}")
        return {
            key: data.get(key)
            for key in ("status", "progress", "estimatedCompletion", "assignedTo", "actualHours")
        }

    def update_task_status(self, task_id: str, status: str, notes: Optional[str] = None) -> Dict[str, Any]:
        if self.mock_mode:
            logger.info("SEO Works mock mode: task %s -> %s", task_id, status)
            return {"taskId": task_id, "assignedTo": MOCK_ASSIGNEE}
        data = self._request("PATCH", f"/tasks/{task_id}/status", json={"status": status, "notes": notes})
        return {"taskId": data.get("taskId"), "assignedTo": data.get("assignedTo")}

    def cancel_task(self, task_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        return self.update_task_status(task_id, "cancelled", reason)


def get_client() -> SEOWorksClient:
    return SEOWorksClient()


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def _completion_date(data: Dict[str, Any]):
    return to_naive_utc(data["completion_date"]) if data["status"] == "completed" else None


def process_webhook(db: Session, data: Dict[str, Any]) -> tuple[Dict[str, Any], bool]:
    """Create or update the task for ``data["id"]``.

    Returns ``(response_body, created)``.
    """

    log = get_logger(external_id=data["id"], status=data["status"])
    task = crud.get_seoworks_task_by_external_id(db, data["id"])

    if task is not None:
        _update_task(db, task, data)
        crud.create_audit_log(
            db,
            action="SEOWORKS_TASK_UPDATED",
            entity_type="seoworks_task",
            entity_id=task.id,
            user_email=SYSTEM_EMAIL,
            details={
                "externalId": data["id"],
                "status": data["status"],
                "isWeekly": data["is_weekly"],
                "hasOrder": task.order is not None,
            },
        )
        log.info("seoworks_task_updated", order_id=task.order_id)
        return (
            {
                "success": True,
                "message": "Task updated successfully",
                "task": {
                    "id": task.id,
                    "externalId": data["id"],
                    "status": task.status,
                    "completedAt": task.completion_date.isoformat() if task.completion_date else None,
                    "orderId": task.order_id,
                },
            },
            False,
        )

    task = SEOWorksTask(
        external_id=data["id"],
        task_type=data["task_type"],
        status=data["status"],
        completion_date=_completion_date(data),
        post_title=data["post_title"],
        post_url=data.get("post_url") or "",
        completion_notes=data.get("completion_notes"),
        is_weekly=data["is_weekly"],
        payload=data.get("payload"),
        processed_at=utc_now_naive(),
    )
    db.add(task)
    db.flush()

    order = crud.find_order_for_seoworks_task(db, task_type=data["task_type"], post_title=data["post_title"])
    if order is not None:
        task.order_id = order.id
        order.seoworks_task_id = data["id"]
    db.commit()

    crud.create_audit_log(
        db,
        action="SEOWORKS_TASK_CREATED",
        entity_type="seoworks_task",
        entity_id=task.id,
        user_email=SYSTEM_EMAIL,
        details={
            "externalId": data["id"],
            "taskType": data["task_type"],
            "status": data["status"],
            "isWeekly": data["is_weekly"],
            "matchedOrder": order is not None,
        },
    )
    log.info("seoworks_task_created", matched_order=order is not None)
    return (
        {
            "success": True,
            "message": "Task created successfully",
            "task": {
                "id": task.id,
                "externalId": data["id"],
                "status": task.status,
                "matchedOrder": order is not None,
            },
        },
        True,
    )


def _update_task(db: Session, task: SEOWorksTask, data: Dict[str, Any]) -> None:
    task.task_type = data["task_type"]
    task.status = data["status"]
    task.completion_date = _completion_date(data)
    task.post_title = data["post_title"]
    task.post_url = data.get("post_url")
    task.completion_notes = data.get("completion_notes")
    task.is_weekly = data["is_weekly"]
    task.payload = data.get("payload")
    task.processed_at = utc_now_naive()

    order = task.order
    if order is not None:
        order.status = data["status"]
        order.completion_notes = data.get("completion_notes")
        order.completed_at = task.completion_date
        if data.get("payload"):
            deliverable = {
                "type": "content",
                "postTitle": data["post_title"],
                "postUrl": data.get("post_url"),
                **data["payload"],
            }
            order.deliverables = [*(order.deliverables or []), deliverable]
            extracted = extract_deliverable_data(data["payload"])
            order.page_title = extracted["pageTitle"] or order.page_title
            order.content_url = extracted["contentUrl"] or order.content_url
    db.commit()
    if order is not None:
        task_context.invalidate(order.agency_id)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def assign_order(db: Session, order: Order, *, client: Optional[SEOWorksClient] = None) -> Dict[str, Any]:
    """Submit *order* to SEOWorks using the agency's onboarding package rules.

    Raises :class:`SEOWorksError` after recording ``TASK_ASSIGNMENT_FAILED``.
    """

    client = client or get_client()
    try:
        if order.agency is None:
            raise SEOWorksError("Order or agency not found")
        onboarding = crud.get_latest_onboarding(db, order.agency_id)
        if onboarding is None:
            raise SEOWorksError("No onboarding found for agency")

        package = getattr(onboarding.package, "value", onboarding.package)
        task_type = getattr(order.task_type, "value", order.task_type) or "general"
        rules = get_assignment_rules(package, task_type)

        response = client.create_task(
            {
                "task_id": str(order.id),
                "task_type": task_type,
                "title": order.title,
                "description": order.description,
                "priority": rules["priority"],
                "estimated_hours": order.estimated_hours or rules["defaultHours"],
                "dealership_id": str(order.agency_id),
                "dealership_name": order.agency.name,
                "package": package,
                "created_at": order.created_at.isoformat() if order.created_at else None,
                "metadata": {
                    "agency_slug": order.agency.slug,
                    "user_email": order.user.email if order.user else None,
                    "onboarding_id": onboarding.id,
                },
            }
        )
    except SEOWorksError as exc:
        db.rollback()
        crud.create_audit_log(
            db,
            action="TASK_ASSIGNMENT_FAILED",
            entity_type="order",
            entity_id=order.id,
            user_email="system",
            details={"error": str(exc)},
        )
        logger.warning("Assigning order %s to SEOWorks failed: %s", order.id, exc)
        raise

    order.status = OrderStatus.IN_PROGRESS.value
    order.assigned_to = response.get("assignedTo") or DEFAULT_ASSIGNEE
    order.seoworks_task_id = response.get("taskId")
    if order.started_at is None:
        order.started_at = utc_now_naive()
    crud.create_audit_log(
        db,
        action="TASK_ASSIGNED_TO_SEOWORKS",
        entity_type="order",
        entity_id=order.id,
        user_email="system",
        details={
            "seoworksTaskId": order.seoworks_task_id,
            "assignedTo": order.assigned_to,
            "priority": rules["priority"],
            "turnaround": rules["turnaround"],
        },
        commit=False,
    )
    db.commit()
    return {"success": True, "seoworksTaskId": order.seoworks_task_id, "assignedTo": order.assigned_to}
