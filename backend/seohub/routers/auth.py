"""Authentication routes (Google Sign-In → platform JWT)."""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from jose import jwt
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import is_super_admin
from seohub.dependencies.auth import role_of
from seohub.schemas.schemas import TokenOut

router = APIRouter(prefix="/auth", tags=["auth"])

ACCESS_TOKEN_TTL = timedelta(minutes=30)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _verify_google_id_token(id_token_str: str) -> dict[str, Any]:
    """Validate the JWT issued by Google and return the decoded claims.

    Raises HTTPException(401) if the token is invalid or the *aud* claim does
    not match our configured client ID.
    """

    client_id = get_settings().google_client_id
    if not client_id:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="GOOGLE_CLIENT_ID not set")

    try:
        # verify_oauth2_token does signature, expiration, issuer & audience.
        return id_token.verify_oauth2_token(id_token_str, google_requests.Request(), client_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Google token") from exc


def _issue_access_token(user_id: int, email: str, expires_delta: timedelta = ACCESS_TOKEN_TTL) -> str:
    """Return signed HS256 access token."""

    expiry = datetime.now(timezone.utc) + expires_delta
    payload = {
        "sub": str(user_id),
        "email": email,
        "exp": int(expiry.timestamp()),
    }
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/google", response_model=TokenOut)
def google_sign_in(body: dict[str, str], db: Session = Depends(get_db)) -> TokenOut:  # noqa: D401 – simple name
    """Exchange a Google ID token for a platform access token.

    Expected JSON body: `{ "id_token": "<JWT from Google>" }`.
    """

    raw_token = body.get("id_token")
    if not raw_token or not isinstance(raw_token, str):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="id_token must be provided")

    claims = _verify_google_id_token(raw_token)

    email: str = claims.get("email")  # type: ignore[assignment]
    sub: str = claims.get("sub")  # stable Google user id

    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google token missing email claim")

    user = crud.get_user_by_email(db, email)
    if not user:
        user = crud.create_user(
            db,
            email=email,
            name=claims.get("name"),
            image=claims.get("picture"),
            provider="google",
            provider_user_id=sub,
        )
    elif not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    crud.create_audit_log(
        db, action="USER_SIGNED_IN", entity_type="user", entity_id=user.id, user_id=user.id, user_email=user.email
    )

    access_token = _issue_access_token(user.id, user.email)
    return TokenOut(access_token=access_token, expires_in=int(ACCESS_TOKEN_TTL.total_seconds()))


@router.get("/verify")
def verify_token(current_user=Depends(get_current_user)):
    """Cheap token check used by the frontend on page load."""

    return {
        "valid": True,
        "user": {
            "id": current_user.id,
            "email": current_user.email,
            "role": role_of(current_user),
            "isSuperAdmin": is_super_admin(current_user),
            "agencyId": current_user.agency_id,
        },
    }
