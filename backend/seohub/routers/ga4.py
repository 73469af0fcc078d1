"""Google Analytics 4: OAuth connect, property selection and disconnect."""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import require_agency
from seohub.schemas.schemas import GA4ConnectIn
from seohub.services import google_oauth
from seohub.services.ga4_service import GA4APIError
from seohub.services.ga4_service import GA4Service
from seohub.services.google_oauth import GoogleAuthError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ga4", tags=["ga4"])

STATE_PURPOSE = "ga4"


def _settings_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{get_settings().app_url}/settings/ga4?{query}", status_code=status.HTTP_302_FOUND)


def _error_redirect(message: str) -> RedirectResponse:
    return _settings_redirect(f"status=error&error={quote(message)}")


@router.get("/auth")
def auth_url(current_user=Depends(get_current_user)):
    state = google_oauth.encode_state(current_user.id, STATE_PURPOSE)
    url = google_oauth.build_auth_url(
        scopes=google_oauth.GA4_SCOPES,
        callback_path=google_oauth.GA4_CALLBACK_PATH,
        state=state,
    )
    return {"authUrl": url}


@router.get("/auth/callback")
def auth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Google redirects the browser here; the signed ``state`` names the user."""

    if error:
        return _error_redirect(error)
    if not code or not state:
        return _error_redirect("Missing authorization code")

    try:
        user_id = google_oauth.decode_state(state, STATE_PURPOSE)
        tokens = google_oauth.exchange_code(code, google_oauth.GA4_CALLBACK_PATH)
    except GoogleAuthError as exc:
        logger.warning("GA4 OAuth callback rejected: %s", exc)
        return _error_redirect("Authorization failed")

    if not tokens.get("access_token") or not tokens.get("refresh_token"):
        return _error_redirect("Failed to obtain tokens")

    google_oauth.store_tokens(db, "ga4", user_id, tokens)
    crud.create_audit_log(db, action="GA4_TOKEN_CONNECTED", entity_type="user", entity_id=user_id, user_id=user_id)
    return _settings_redirect("status=success")


@router.get("/properties")
def list_properties(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        properties = GA4Service.for_user(db, current_user.id).list_properties()
    except GoogleAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except GA4APIError as exc:
        code = exc.status_code if exc.status_code in (401, 403) else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    return {"success": True, "properties": properties}


@router.post("/connect")
def connect_property(body: GA4ConnectIn, db: Session = Depends(get_db), current_user=Depends(require_agency)):
    agency = current_user.agency
    agency.ga4_property_id = body.property_id
    agency.ga4_property_name = body.property_name
    crud.create_audit_log(
        db,
        action="GA4_PROPERTY_CONNECTED",
        entity_type="agency",
        entity_id=agency.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"propertyId": body.property_id, "propertyName": body.property_name},
        commit=False,
    )
    db.commit()
    return {"success": True, "message": "GA4 property connected successfully"}


@router.post("/disconnect")
def disconnect(db: Session = Depends(get_db), current_user=Depends(require_agency)):
    agency = current_user.agency
    agency.ga4_property_id = None
    agency.ga4_property_name = None
    crud.deactivate_user_schedules(db, agency_id=agency.id, user_id=current_user.id, commit=False)
    db.commit()

    crud.delete_ga4_token(db, current_user.id)
    crud.create_audit_log(
        db,
        action="GA4_TOKEN_DISCONNECTED",
        entity_type="agency",
        entity_id=agency.id,
        user_id=current_user.id,
        user_email=current_user.email,
    )
    return {"success": True}
