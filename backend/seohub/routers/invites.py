"""Invitation landing and acceptance.

``GET /invite/{token}`` is public so the landing page can render before the
visitor signs in; accepting requires an authenticated session whose e-mail
matches the invitation.
"""

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status
from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import role_of
from seohub.utils.time import utc_now_naive

router = APIRouter(prefix="/invite", tags=["invites"])


def _load_invite(db: Session, token: str):
    invite = crud.get_invite_by_token(db, token)
    if invite is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    return invite


@router.get("/{token}")
def read_invite(token: str, db: Session = Depends(get_db)):
    invite = _load_invite(db, token)
    if invite.expires_at < utc_now_naive():
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="This invitation has expired")

    inviter = invite.invited_by_user
    return {
        "invite": {
            "email": invite.email,
            "role": invite.role,
            "isSuperAdmin": invite.is_super_admin,
            "status": invite.status,
            "invitedBy": {"name": inviter.name, "email": inviter.email} if inviter else None,
            "agency": {"name": invite.agency.name} if invite.agency else None,
            "expiresAt": invite.expires_at.isoformat(),
        }
    }


@router.post("/{token}/accept")
def accept_invite(token: str, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    invite = _load_invite(db, token)

    if invite.status == "accepted":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="This invitation has already been accepted"
        )
    if invite.expires_at < utc_now_naive():
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="This invitation has expired")
    if invite.email.lower() != current_user.email.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Invitation is for {invite.email}, but you are signed in as {current_user.email}",
        )

    user = crud.accept_invite(db, invite, current_user)
    return {
        "success": True,
        "message": "Invitation accepted successfully",
        "user": {
            "id": user.id,
            "email": user.email,
            "isSuperAdmin": user.is_super_admin,
            "role": role_of(user),
        },
    }
