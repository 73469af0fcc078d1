"""User profile, administration and invitation routes.

Self-service endpoints (``/users/me``, ``/user/details``, ``/user/theme``)
are open to any authenticated user; the user directory and invitations are
restricted to super admins.
"""

import logging
from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.constants import DEFAULT_COMPANY_NAME
from seohub.constants import DEFAULT_PRIMARY_COLOR
from seohub.constants import DEFAULT_SECONDARY_COLOR
from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import require_super_admin
from seohub.schemas.schemas import InviteCreate
from seohub.schemas.schemas import InviteOut
from seohub.schemas.schemas import ThemeIn
from seohub.schemas.schemas import UserAdminUpdate
from seohub.schemas.schemas import UserDetailOut
from seohub.schemas.schemas import UserOut
from seohub.schemas.schemas import UserSelfUpdate
from seohub.schemas.schemas import serialize
from seohub.services.email_service import EmailDeliveryError
from seohub.services.email_service import send_invite_email

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"], dependencies=[Depends(get_current_user)])


# ---------------------------------------------------------------------------
# /users/me – retrieve / update current profile
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=UserOut)
def read_current_user(current_user=Depends(get_current_user)):
    """Return the authenticated user's profile."""

    return current_user


@router.put("/users/me", response_model=UserOut)
def update_current_user(
    patch: UserSelfUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    updated = crud.update_user(db, current_user.id, name=patch.name, image=patch.image)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return updated


@router.get("/user/details", response_model=UserDetailOut)
def read_user_details(current_user=Depends(get_current_user)):
    return current_user


# ---------------------------------------------------------------------------
# Theme preferences
# ---------------------------------------------------------------------------


def _theme_of(user) -> Dict[str, Any]:
    theme = dict(user.theme or {})
    return {
        "companyName": theme.get("companyName") or DEFAULT_COMPANY_NAME,
        "primaryColor": theme.get("primaryColor") or DEFAULT_PRIMARY_COLOR,
        "secondaryColor": theme.get("secondaryColor") or DEFAULT_SECONDARY_COLOR,
        "logo": theme.get("logo"),
    }


@router.get("/user/theme")
def read_theme(current_user=Depends(get_current_user)):
    return _theme_of(current_user)


@router.post("/user/theme")
def save_theme(body: ThemeIn, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    theme = _theme_of(current_user)
    theme.update(body.model_dump(by_alias=True, exclude_none=True))
    crud.update_user(db, current_user.id, theme=theme)
    return {"success": True, "theme": theme}


# ---------------------------------------------------------------------------
# User directory (super admin)
# ---------------------------------------------------------------------------


@router.get("/users")
@router.get("/users/")
def list_users(db: Session = Depends(get_db), _admin=Depends(require_super_admin)):
    users = crud.get_users(db)
    return {"users": [serialize(UserDetailOut, user) for user in users]}


@router.patch("/users", response_model=UserOut)
def update_user(body: UserAdminUpdate, db: Session = Depends(get_db), admin=Depends(require_super_admin)):
    updated = crud.update_user(db, body.user_id, is_super_admin=body.is_super_admin, role=body.role)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    crud.create_audit_log(
        db,
        action="USER_UPDATED",
        entity_type="user",
        entity_id=updated.id,
        user_id=admin.id,
        user_email=admin.email,
        details=body.model_dump(by_alias=True, exclude_none=True),
    )
    return updated


@router.delete("/users")
def delete_user(
    user_id: int = Query(..., alias="userId"),
    db: Session = Depends(get_db),
    admin=Depends(require_super_admin),
):
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")

    target = crud.get_user(db, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    deleted_email = target.email

    crud.delete_user(db, user_id)
    crud.create_audit_log(
        db,
        action="USER_DELETED",
        entity_type="user",
        entity_id=user_id,
        user_id=admin.id,
        user_email=admin.email,
        details={"deletedUserEmail": deleted_email},
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Invitations (super admin)
# ---------------------------------------------------------------------------


@router.post("/users/invite")
def create_invite(body: InviteCreate, db: Session = Depends(get_db), admin=Depends(require_super_admin)):
    existing = crud.get_user_by_email(db, body.email)
    if existing is not None:
        if body.is_super_admin and not existing.is_super_admin:
            crud.update_user(db, existing.id, is_super_admin=True)
            return {
                "message": "User already exists - updated to super admin",
                "user": {"email": existing.email, "isSuperAdmin": True},
            }
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists with this email")

    if crud.get_active_invite(db, body.email) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="An active invite already exists for this email"
        )

    invite = crud.create_invite(
        db,
        email=body.email,
        role="super_admin" if body.is_super_admin else body.role,
        is_super_admin=body.is_super_admin,
        agency_id=None if body.is_super_admin else (body.agency_id or admin.agency_id),
        invited_by=admin.id,
    )

    invite_url = f"{get_settings().app_url}/invite/{invite.token}"
    try:
        send_invite_email(
            to=invite.email,
            invite_url=invite_url,
            inviter=admin.name or admin.email,
            agency_name=invite.agency.name if invite.agency else None,
        )
    except EmailDeliveryError as exc:
        logger.warning("Failed to send invite e-mail to %s: %s", invite.email, exc)

    return {
        "success": True,
        "invite": {**serialize(InviteOut, invite), "inviteUrl": invite_url},
        "message": f"Invite sent to {invite.email}. They can sign in with Google using the invite link.",
    }


@router.get("/users/invite")
def list_invites(db: Session = Depends(get_db), admin=Depends(require_super_admin)):
    invites = crud.get_invites(db, agency_id=admin.agency_id)
    return {"invites": [serialize(InviteOut, invite) for invite in invites]}
