"""Administrative routes: agencies, the escalation queue and feature flags."""

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
from seohub.dependencies.auth import agency_scope
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import require_admin
from seohub.dependencies.auth import require_super_admin
from seohub.schemas.schemas import AgencyCreate
from seohub.schemas.schemas import AgencyOut
from seohub.schemas.schemas import EscalationOut
from seohub.schemas.schemas import FeatureFlagUpdate
from seohub.schemas.schemas import serialize
from seohub.services.feature_flags import feature_flags

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(get_current_user), Depends(require_admin)],
)

logger = logging.getLogger(__name__)

# Higher rank sorts first.
PRIORITY_RANK = {"urgent": 3, "high": 2, "medium": 1, "low": 0}


# ---------------------------------------------------------------------------
# Agencies (super admin)
# ---------------------------------------------------------------------------


@router.get("/agencies")
def list_agencies(db: Session = Depends(get_db), _admin=Depends(require_super_admin)):
    agencies = crud.get_agencies(db)
    return {
        "agencies": [
            {**serialize(AgencyOut, agency), "userCount": len(agency.users)}
            for agency in agencies
        ]
    }


@router.post("/agencies", status_code=status.HTTP_201_CREATED)
def create_agency(body: AgencyCreate, db: Session = Depends(get_db), admin=Depends(require_super_admin)):
    if crud.get_agency_by_slug(db, body.slug) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Agency slug already exists")

    agency = crud.create_agency(db, name=body.name, slug=body.slug, plan=body.plan, domain=body.domain)
    crud.create_audit_log(
        db,
        action="AGENCY_CREATED",
        entity_type="agency",
        entity_id=agency.id,
        user_id=admin.id,
        user_email=admin.email,
        details={"name": agency.name, "slug": agency.slug},
    )
    logger.info("Agency %s (%s) created by %s", agency.slug, agency.id, admin.email)
    return {"agency": serialize(AgencyOut, agency)}


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


@router.get("/escalations")
def list_escalations(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    escalations = crud.get_escalations(
        db,
        agency_id=agency_scope(current_user),
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
    )
    # get_escalations returns newest first; the stable sort keeps that within a rank.
    escalations.sort(key=lambda e: PRIORITY_RANK.get(e.priority, -1), reverse=True)

    def _row(escalation):
        data = serialize(EscalationOut, escalation)
        user = escalation.user
        data["user"] = {"id": user.id, "name": user.name, "email": user.email} if user else None
        data["agency"] = {"id": escalation.agency.id, "name": escalation.agency.name} if escalation.agency else None
        return data

    stats = {
        "total": len(escalations),
        "pending": sum(1 for e in escalations if e.status == "pending"),
        "assigned": sum(1 for e in escalations if e.status == "assigned"),
        "in_progress": sum(1 for e in escalations if e.status == "in_progress"),
        "resolved": sum(1 for e in escalations if e.status == "resolved"),
        "urgent": sum(1 for e in escalations if e.priority == "urgent"),
        "high": sum(1 for e in escalations if e.priority == "high"),
    }
    return {"escalations": [_row(e) for e in escalations], "stats": stats}


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------


@router.get("/feature-flags")
def list_feature_flags():
    return {"flags": [flag.to_dict() for flag in feature_flags.get_all_flags()]}


@router.put("/feature-flags")
def update_feature_flag(body: FeatureFlagUpdate, current_user=Depends(get_current_user)):
    if not body.flag_key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Flag key is required")

    flag = feature_flags.update_flag(
        body.flag_key,
        enabled=body.enabled,
        rollout_percentage=body.rollout_percentage,
        user_segments=body.user_segments,
    )
    if flag is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Flag not found")

    logger.info("Feature flag %s updated by %s", body.flag_key, current_user.email)
    return {"success": True, "flag": flag.to_dict()}
