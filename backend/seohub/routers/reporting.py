"""Reporting dashboard: aggregated GA4 + Search Console metrics and exports."""

import logging
from datetime import date
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import Response
from fastapi import status
from sqlalchemy.orm import Session

from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.schemas.schemas import ReportExportIn
from seohub.services import reporting
from seohub.services.ga4_service import GA4APIError
from seohub.services.google_oauth import GoogleAuthError
from seohub.services.reporting import ExportNotAvailable
from seohub.services.search_console_service import SearchConsoleError
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reporting", tags=["reporting"], dependencies=[Depends(get_current_user)])

_CONTENT_TYPES = {"csv": "text/csv", "json": "application/json"}


@router.get("/aggregate")
def aggregate(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if current_user.agency_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No agency associated with user")

    end = end_date or utc_now_naive().date()
    start = start_date or end - timedelta(days=30)

    try:
        data = reporting.aggregate_reporting_data(db, current_user.agency_id, start, end)
    except GoogleAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except (GA4APIError, SearchConsoleError) as exc:
        logger.error("Reporting aggregation failed for agency %s: %s", current_user.agency_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch reporting data") from exc

    return {
        "success": True,
        "data": data,
        "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
    }


@router.post("/export")
def export(body: ReportExportIn):
    fmt = body.format.lower()
    try:
        content = reporting.export_report(body.data, fmt)
    except ExportNotAvailable as exc:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    filename = f"seo-report-{utc_now_naive().date().isoformat()}.{fmt}"
    return Response(
        content=content,
        media_type=_CONTENT_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
