"""Order routes: CRUD, the status lifecycle, messages, deliverables and
assignment to SEOWorks.

Orders are always scoped to the caller's agency (super admins without an
agency see every agency).  Regular users only see orders they created.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import HTTPException
from fastapi import Query
from fastapi import UploadFile
from fastapi import status
from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import agency_scope
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import is_admin
from seohub.dependencies.auth import is_super_admin
from seohub.dependencies.auth import require_admin
from seohub.models.enums import OrderStatus
from seohub.schemas.schemas import OrderCreate
from seohub.schemas.schemas import OrderMessageCreate
from seohub.schemas.schemas import OrderMessageOut
from seohub.schemas.schemas import OrderOut
from seohub.schemas.schemas import OrderUpdate
from seohub.schemas.schemas import serialize
from seohub.services import seoworks
from seohub.services import task_context
from seohub.services.seoworks import SEOWorksError
from seohub.services.upload_service import store_deliverable
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"], dependencies=[Depends(get_current_user)])

VALID_TRANSITIONS = {
    "pending": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled", "pending"},
    "completed": {"in_progress"},
    "cancelled": {"pending"},
}


def _status_value(value) -> str:
    return getattr(value, "value", value)


def _is_staff(user) -> bool:
    return is_admin(user) or is_super_admin(user)


def _load_order(db: Session, order_id: int, user):
    order = crud.get_order(db, order_id, agency_id=agency_scope(user))
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


def _check_can_view(order, user) -> None:
    if not _is_staff(user) and order.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def check_transition(current: str, target: str) -> None:
    """Raise 400 unless *current* → *target* is an allowed lifecycle step."""

    if target not in VALID_TRANSITIONS.get(current, set()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status transition from {current} to {target}",
        )


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("")
@router.get("/")
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    orders, total = crud.get_orders(
        db,
        agency_id=agency_scope(current_user),
        user_id=None if _is_staff(current_user) else current_user.id,
        filters={"status": status_filter},
        sort_by=sort_by,
        sort_order=sort_order,
        skip=offset,
        limit=limit,
    )
    return {
        "orders": [serialize(OrderOut, order) for order in orders],
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }


@router.post("", status_code=status.HTTP_201_CREATED, response_model=OrderOut)
@router.post("/", status_code=status.HTTP_201_CREATED, response_model=OrderOut)
def create_order(body: OrderCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    agency_scope(current_user)
    quota = crud.check_order_limit(db, current_user.agency)
    if not quota["allowed"]:
        logger.warning(
            "Order limit exceeded for agency %s (%s/%s)", current_user.agency_id, quota["current"], quota["limit"]
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Monthly order limit reached ({quota['limit']}). Please upgrade your plan.",
        )

    order = crud.create_order(
        db,
        user=current_user,
        task_type=body.task_type.value,
        task_category=seoworks.map_task_type_to_category(body.task_type.value),
        title=body.title,
        description=body.description,
        priority=body.priority.value,
        estimated_hours=body.estimated_hours,
        keywords=body.keywords,
        target_url=body.target_url,
        word_count=body.word_count,
    )
    crud.create_audit_log(
        db,
        action="ORDER_CREATED",
        entity_type="order",
        entity_id=order.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"taskType": order.task_type, "title": order.title},
    )
    task_context.invalidate(order.agency_id)
    logger.info("Order %s created by %s", order.id, current_user.email)
    return order


# ---------------------------------------------------------------------------
# Single order
# ---------------------------------------------------------------------------


@router.get("/{order_id}")
def read_order(order_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    order = _load_order(db, order_id, current_user)
    _check_can_view(order, current_user)

    data = serialize(OrderOut, order)
    recent = sorted(order.messages, key=lambda m: m.id, reverse=True)[:10]
    data["messages"] = [serialize(OrderMessageOut, message) for message in recent]
    return data


@router.patch("/{order_id}", response_model=OrderOut)
def update_order(
    order_id: int,
    body: OrderUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_admin),
):
    order = _load_order(db, order_id, current_user)
    current = _status_value(order.status)
    target = body.status.value if body.status else None

    if target and target != current:
        check_transition(current, target)
        order.status = target
        now = utc_now_naive()
        if target == OrderStatus.COMPLETED.value:
            order.completed_at = now
        elif target == OrderStatus.IN_PROGRESS.value and current == OrderStatus.PENDING.value:
            order.started_at = now

        crud.create_audit_log(
            db,
            action="ORDER_STATUS_CHANGED",
            entity_type="order",
            entity_id=order.id,
            user_id=current_user.id,
            user_email=current_user.email,
            details={"fromStatus": current, "toStatus": target},
            commit=False,
        )

    for field in ("assigned_to", "actual_hours", "completion_notes", "quality_score", "content_url", "page_title"):
        value = getattr(body, field)
        if value is not None:
            setattr(order, field, value)

    if body.completion_notes and target == OrderStatus.COMPLETED.value:
        crud.create_order_message(
            db,
            order_id=order.id,
            user_id=current_user.id,
            content=body.completion_notes,
            type="completion_note",
            commit=False,
        )

    db.commit()
    db.refresh(order)
    task_context.invalidate(order.agency_id)
    return order


@router.delete("/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    order = _load_order(db, order_id, current_user)
    _check_can_view(order, current_user)

    crud.soft_delete_order(db, order)
    crud.create_audit_log(
        db,
        action="ORDER_DELETED",
        entity_type="order",
        entity_id=order.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"orderTitle": order.title},
    )
    task_context.invalidate(order.agency_id)
    return {"id": order.id, "message": "Order deleted successfully"}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{order_id}/messages")
def list_order_messages(order_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    order = _load_order(db, order_id, current_user)
    _check_can_view(order, current_user)
    return {"messages": [serialize(OrderMessageOut, m) for m in crud.get_order_messages(db, order.id)]}


@router.post("/{order_id}/messages", status_code=status.HTTP_201_CREATED)
def create_order_message(
    order_id: int,
    body: OrderMessageCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    order = _load_order(db, order_id, current_user)
    _check_can_view(order, current_user)

    message = crud.create_order_message(
        db, order_id=order.id, user_id=current_user.id, content=body.content, type=body.type.value
    )
    return {"message": serialize(OrderMessageOut, message)}


# ---------------------------------------------------------------------------
# Deliverables
# ---------------------------------------------------------------------------


@router.post("/{order_id}/upload")
def upload_deliverable(
    order_id: int,
    file: UploadFile = File(...),
    description: str = Form(""),
    db: Session = Depends(get_db),
    current_user=Depends(require_admin),
):
    order = _load_order(db, order_id, current_user)
    deliverable = store_deliverable(file, order_id=order.id, user_id=current_user.id, description=description)

    order.deliverables = [*(order.deliverables or []), deliverable]
    crud.create_audit_log(
        db,
        action="DELIVERABLE_UPLOADED",
        entity_type="order",
        entity_id=order.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"filename": deliverable["filename"], "size": deliverable["size"], "type": deliverable["contentType"]},
        commit=False,
    )
    crud.create_order_message(
        db,
        order_id=order.id,
        user_id=current_user.id,
        content=f"Uploaded deliverable: {deliverable['filename']}",
        type="status_update",
        commit=False,
    )
    db.commit()
    return {"deliverable": deliverable, "message": "File uploaded successfully"}


@router.delete("/{order_id}/upload")
def delete_deliverable(
    order_id: int,
    deliverable_id: Optional[str] = Query(None, alias="deliverableId"),
    db: Session = Depends(get_db),
    current_user=Depends(require_admin),
):
    if not deliverable_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Deliverable ID is required")

    order = _load_order(db, order_id, current_user)
    existing = list(order.deliverables or [])
    remaining = [d for d in existing if d.get("id") != deliverable_id]
    if len(remaining) == len(existing):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deliverable not found")

    order.deliverables = remaining
    crud.create_audit_log(
        db,
        action="DELIVERABLE_DELETED",
        entity_type="order",
        entity_id=order.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"deliverableId": deliverable_id},
        commit=False,
    )
    db.commit()
    return {"deliverableId": deliverable_id, "message": "Deliverable deleted successfully"}


# ---------------------------------------------------------------------------
# SEOWorks assignment
# ---------------------------------------------------------------------------


@router.post("/{order_id}/assign")
def assign_order(order_id: int, db: Session = Depends(get_db), current_user=Depends(require_admin)):
    order = _load_order(db, order_id, current_user)
    try:
        result = seoworks.assign_order(db, order)
    except SEOWorksError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    task_context.invalidate(order.agency_id)
    return result
