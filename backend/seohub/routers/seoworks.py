"""Inbound SEOWorks API: task webhook, order completion/status, metadata.

Every write endpoint authenticates with the shared ``x-api-key`` header
rather than a user session.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Query
from fastapi import Request
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import get_db
from seohub.models.enums import OrderStatus
from seohub.schemas.schemas import SEOWorksWebhookIn
from seohub.schemas.schemas import TaskCompleteIn
from seohub.services import seoworks
from seohub.services import task_context
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/seoworks", tags=["seoworks"])

TASK_TYPES = [
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

WEBHOOK_SCHEMA = {
    "id": "string (required) - Unique task identifier",
    "task_type": "string (required) - One of: blog, page, gbp, maintenance, seo, seo_audit",
    "status": "string (required) - One of: completed, pending, in_progress, cancelled",
    "completion_date": "string (required) - ISO 8601 datetime",
    "post_title": "string (required) - Title of the content",
    "post_url": "string (optional) - URL to the live content",
    "completion_notes": "string (optional) - Additional notes",
    "is_weekly": "boolean (optional) - Whether this is a weekly rollup",
    "payload": "object (optional) - Additional data",
}


def _unauthorized(details: Optional[str] = None) -> JSONResponse:
    body = {"error": "Unauthorized"}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=body)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@router.post("/webhook")
async def receive_webhook(request: Request, db: Session = Depends(get_db), x_api_key: Optional[str] = Header(None)):
    if not seoworks.check_api_key(x_api_key):
        return _unauthorized("Invalid or missing API key")

    try:
        payload = await request.json()
        data = SEOWorksWebhookIn.model_validate(payload)
    except ValidationError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation error", "details": exc.errors(include_url=False, include_context=False)},
        )
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON body"})

    try:
        body, created = seoworks.process_webhook(db, data.model_dump())
    except Exception as exc:
        db.rollback()
        logger.exception("SEOWorks webhook processing failed for task %s", data.id)
        crud.create_audit_log(
            db,
            action="WEBHOOK_ERROR",
            entity_type="webhook",
            entity_id=None,
            user_email=seoworks.SYSTEM_EMAIL,
            details={"error": str(exc), "timestamp": utc_now_naive().isoformat()},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(exc)},
        )

    return JSONResponse(status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK, content=body)


@router.get("/webhook")
def describe_webhook(x_api_key: Optional[str] = Header(None)):
    if not seoworks.check_api_key(x_api_key):
        return _unauthorized()
    return {
        "success": True,
        "endpoint": "/api/seoworks/webhook",
        "status": "ready",
        "acceptedMethods": ["POST", "GET"],
        "requiredHeaders": {
            "x-api-key": "Required - Your SEOWerks API key",
            "content-type": "application/json",
        },
        "schema": WEBHOOK_SCHEMA,
    }


# ---------------------------------------------------------------------------
# Orders as tasks
# ---------------------------------------------------------------------------


@router.post("/tasks/complete")
def complete_task(body: TaskCompleteIn, db: Session = Depends(get_db), x_api_key: Optional[str] = Header(None)):
    if not seoworks.check_api_key(x_api_key):
        return _unauthorized("Invalid or missing API key")

    if body.request_id is None or not body.status:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required fields: requestId and status"},
        )
    valid = [s.value for s in OrderStatus]
    if body.status not in valid:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": f"Invalid status. Must be one of: {', '.join(valid)}"},
        )

    order = crud.get_order(db, body.request_id)
    if order is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Order not found"})

    order.status = body.status
    order.completed_at = utc_now_naive() if body.status == OrderStatus.COMPLETED.value else None
    if body.deliverables is not None:
        order.deliverables = body.deliverables
    order.completion_notes = body.completion_notes or order.completion_notes
    order.actual_hours = body.actual_hours or order.actual_hours
    order.quality_score = body.quality_score or order.quality_score

    crud.create_audit_log(
        db,
        action="ORDER_UPDATED",
        entity_type="order",
        entity_id=order.id,
        user_email="seoworks-api",
        details={
            "status": body.status,
            "updatedBy": "seoworks-api",
            "deliverables": len(body.deliverables or []),
        },
        commit=False,
    )
    db.commit()
    db.refresh(order)
    task_context.invalidate(order.agency_id)
    logger.info("SEOWorks marked order %s as %s", order.id, body.status)

    return {
        "success": True,
        "message": "Order updated successfully",
        "order": {
            "id": order.id,
            "status": getattr(order.status, "value", order.status),
            "completedAt": order.completed_at.isoformat() if order.completed_at else None,
            "actualHours": order.actual_hours,
            "qualityScore": order.quality_score,
        },
    }


@router.get("/tasks/status")
def task_status(
    request_id: Optional[int] = Query(None, alias="requestId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    task_type: Optional[str] = Query(None, alias="taskType"),
    db: Session = Depends(get_db),
    x_api_key: Optional[str] = Header(None),
):
    if not seoworks.check_api_key(x_api_key):
        return _unauthorized("Invalid or missing API key")

    orders, _ = crud.get_orders(
        db,
        filters={"id": request_id, "status": status_filter, "task_type": task_type},
        limit=100,
    )
    return {
        "success": True,
        "count": len(orders),
        "tasks": [
            {
                "id": order.id,
                "taskType": order.task_type,
                "title": order.title,
                "description": order.description,
                "status": getattr(order.status, "value", order.status),
                "requestedAt": order.created_at.isoformat() if order.created_at else None,
                "completedAt": order.completed_at.isoformat() if order.completed_at else None,
                "assignedTo": order.assigned_to,
                "estimatedHours": order.estimated_hours,
                "actualHours": order.actual_hours,
                "deliverables": order.deliverables or [],
                "completionNotes": order.completion_notes,
                "qualityScore": order.quality_score,
            }
            for order in orders
        ],
    }


@router.get("/tasks/types")
def task_types():
    return {"success": True, "taskTypes": TASK_TYPES}


@router.get("/health")
def health():
    return {
        "success": True,
        "status": "healthy",
        "timestamp": utc_now_naive().isoformat() + "Z",
        "service": "Rylie SEO Hub - SEO Werks API",
        "version": "1.0.0",
    }
