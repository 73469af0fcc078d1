"""Google Search Console: OAuth connect, site listing and analytics."""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.schemas.schemas import PrimarySiteIn
from seohub.services import google_oauth
from seohub.services.google_oauth import GoogleAuthError
from seohub.services.search_console_service import SearchConsoleError
from seohub.services.search_console_service import SearchConsoleService
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search-console", tags=["search-console"])

STATE_PURPOSE = "search_console"


def _service_for(db: Session, user_id: int) -> SearchConsoleService:
    try:
        return SearchConsoleService.for_user(db, user_id)
    except GoogleAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


@router.get("/connect")
def connect(current_user=Depends(get_current_user)):
    state = google_oauth.encode_state(current_user.id, STATE_PURPOSE)
    url = google_oauth.build_auth_url(
        scopes=google_oauth.SEARCH_CONSOLE_SCOPES,
        callback_path=google_oauth.SEARCH_CONSOLE_CALLBACK_PATH,
        state=state,
    )
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
def callback(code: Optional[str] = None, state: Optional[str] = None, db: Session = Depends(get_db)):
    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No authorization code provided")

    try:
        user_id = google_oauth.decode_state(state, STATE_PURPOSE)
        tokens = google_oauth.exchange_code(code, google_oauth.SEARCH_CONSOLE_CALLBACK_PATH)
        sites = SearchConsoleService(tokens["access_token"]).list_sites()
    except (GoogleAuthError, SearchConsoleError, KeyError) as exc:
        logger.warning("Search Console OAuth callback failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to connect Search Console"
        ) from exc

    verified = [site["siteUrl"] for site in sites if site.get("siteUrl")]
    google_oauth.store_tokens(
        db,
        "search_console",
        user_id,
        tokens,
        verified_sites=verified,
        primary_site=verified[0] if verified else None,
    )
    crud.create_audit_log(
        db,
        action="SEARCH_CONSOLE_CONNECTED",
        entity_type="user",
        entity_id=user_id,
        user_id=user_id,
        details={"verifiedSites": len(verified)},
    )
    return RedirectResponse(f"{get_settings().app_url}/settings/search-console", status_code=status.HTTP_302_FOUND)


@router.get("/sites")
def list_sites(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    service = _service_for(db, current_user.id)
    try:
        sites = service.list_sites()
    except SearchConsoleError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch sites") from exc
    return {"sites": sites}


@router.get("/analytics")
def analytics(
    site_url: Optional[str] = Query(None, alias="siteUrl"),
    metric: str = "queries",
    days: int = Query(28, ge=1, le=480),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if not site_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Site URL required")
    if metric not in ("queries", "pages", "performance"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid metric")

    service = _service_for(db, current_user.id)
    try:
        if metric == "queries":
            return service.get_top_queries(site_url, days)
        if metric == "pages":
            return service.get_top_pages(site_url, days)
        end = utc_now_naive().date()
        return service.get_search_analytics(
            site_url,
            start_date=(end - timedelta(days=days)).isoformat(),
            end_date=end.isoformat(),
            dimensions=["date"],
        )
    except SearchConsoleError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch analytics") from exc


@router.post("/primary-site")
def set_primary_site(body: PrimarySiteIn, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    token = crud.get_search_console_token(db, current_user.id)
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Search Console not connected")
    token.primary_site = body.site_url
    db.commit()
    return {"success": True}


@router.post("/disconnect")
def disconnect(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    if not crud.delete_search_console_token(db, current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Search Console not connected")
    return {"success": True}
