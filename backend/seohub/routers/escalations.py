"""Escalation of chat questions to the human SEO team."""

import logging
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
from seohub.dependencies.auth import is_admin
from seohub.dependencies.auth import is_super_admin
from seohub.schemas.schemas import EscalationCreate
from seohub.schemas.schemas import EscalationOut
from seohub.schemas.schemas import EscalationUpdate
from seohub.schemas.schemas import serialize
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/escalations", tags=["escalations"], dependencies=[Depends(get_current_user)])


@router.post("")
@router.post("/")
def create_escalation(body: EscalationCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    if not body.question or not body.priority:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields: question and priority"
        )

    escalation = crud.create_escalation(
        db,
        user_id=current_user.id,
        agency_id=current_user.agency_id,
        original_question=body.question,
        ai_response=body.ai_response,
        user_context=body.additional_context,
        conversation_id=body.conversation_id,
        contact_preference=body.contact_preference,
        priority=body.priority,
        tags=[body.contact_preference or "email", "chat-escalation"],
    )
    crud.create_audit_log(
        db,
        action="ESCALATION_CREATED",
        entity_type="escalation",
        entity_id=escalation.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"priority": body.priority, "contactPreference": body.contact_preference},
    )
    logger.info("Escalation %s (%s) raised by %s", escalation.id, body.priority, current_user.email)
    return {
        "success": True,
        "escalationId": escalation.id,
        "message": "Your question has been sent to our SEO team",
    }


@router.get("")
@router.get("/")
def list_escalations(
    escalation_id: Optional[int] = Query(None, alias="id"),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if escalation_id is not None:
        escalation = crud.get_escalation(db, escalation_id, user_id=current_user.id)
        if escalation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Escalation not found")
        return serialize(EscalationOut, escalation)

    escalations = crud.get_escalations(db, user_id=current_user.id, status=status_filter)
    return {"escalations": [serialize(EscalationOut, e) for e in escalations], "total": len(escalations)}


@router.patch("")
@router.patch("/")
def update_escalation(body: EscalationUpdate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    if body.escalation_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing escalationId")

    escalation = crud.get_escalation(db, body.escalation_id)
    if escalation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Escalation not found")

    staff = is_admin(current_user) or is_super_admin(current_user)
    if not staff and escalation.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    now = utc_now_naive()
    if body.status:
        escalation.status = body.status.value
    if body.assigned_to:
        escalation.assigned_to = body.assigned_to
        escalation.assigned_at = now
    if body.resolution:
        escalation.resolution = body.resolution
        escalation.resolved_at = now
        escalation.resolved_by = current_user.email
        escalation.status = "resolved"
        created = escalation.created_at or now
        escalation.resolution_time = int((now - created).total_seconds() // 60)

    crud.create_audit_log(
        db,
        action="ESCALATION_UPDATED",
        entity_type="escalation",
        entity_id=escalation.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={
            "status": body.status.value if body.status else None,
            "assignedTo": body.assigned_to,
            "resolution": body.resolution,
        },
        commit=False,
    )
    db.commit()
    db.refresh(escalation)
    return {"success": True, "escalation": serialize(EscalationOut, escalation)}
