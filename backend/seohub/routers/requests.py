"""Legacy *requests* view over orders.

Same rows as ``/orders`` but scoped to the caller's own e-mail, with looser
validation and both ``orders`` and ``requests`` keys in the listing.
"""

from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.schemas.schemas import OrderMessageOut
from seohub.schemas.schemas import OrderOut
from seohub.schemas.schemas import RequestCreate
from seohub.schemas.schemas import serialize
from seohub.services import task_context
from seohub.services.seoworks import map_task_type_to_category

router = APIRouter(prefix="/requests", tags=["requests"], dependencies=[Depends(get_current_user)])


@router.get("")
@router.get("/")
def list_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    task_type: Optional[str] = Query(None, alias="taskType"),
    priority: Optional[str] = None,
    task_category: Optional[str] = Query(None, alias="taskCategory"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    orders, total = crud.get_orders(
        db,
        agency_id=current_user.agency_id,
        user_email=current_user.email,
        filters={
            "status": status_filter,
            "task_type": task_type,
            "priority": priority,
            "task_category": task_category,
        },
    )

    rows = []
    for order in orders:
        data = serialize(OrderOut, order)
        latest = max(order.messages, key=lambda m: m.id, default=None)
        data["latestMessage"] = serialize(OrderMessageOut, latest) if latest else None
        rows.append(data)

    return {"orders": rows, "requests": rows, "total": total}


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_request(body: RequestCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    task_type = body.task_type or body.type
    if not body.title or not body.description or not task_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: title, description, taskType",
        )

    order = crud.create_order(
        db,
        user=current_user,
        title=body.title,
        description=body.description,
        task_type=task_type,
        task_category=body.task_category or map_task_type_to_category(task_type),
        priority=body.priority or "medium",
        estimated_hours=body.estimated_hours,
        keywords=body.keywords,
        target_url=body.target_url,
        word_count=body.word_count,
        page_title=body.page_title,
        content_url=body.content_url,
    )
    crud.create_audit_log(
        db,
        action="ORDER_CREATED",
        entity_type="order",
        entity_id=order.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"title": order.title, "taskType": order.task_type, "priority": order.priority},
    )
    task_context.invalidate(order.agency_id)
    return {"order": serialize(OrderOut, order)}
