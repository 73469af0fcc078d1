"""Health check and logo uploads."""

from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import UploadFile
from fastapi import status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.database import check_connection
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.services.feature_flags import USE_REQUESTS_TERMINOLOGY
from seohub.services.upload_service import store_logo
from seohub.utils.time import utc_now

router = APIRouter(tags=["system"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """200 when every boolean check passes, 503 otherwise."""

    settings = get_settings()
    checks: Dict[str, Any] = {
        "database": check_connection(db),
        "auth": settings.auth_disabled or bool(settings.jwt_secret and settings.google_client_id),
        "features": {"requestsTerminology": USE_REQUESTS_TERMINOLOGY},
    }

    results = [value for value in checks.values() if isinstance(value, bool)]
    if all(results):
        overall = "healthy"
    elif any(results):
        overall = "degraded"
    else:
        overall = "unhealthy"

    body = {
        "status": overall,
        "timestamp": utc_now().isoformat(),
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks,
    }
    code = status.HTTP_200_OK if overall == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)


@router.post("/upload")
def upload_logo(file: UploadFile = File(...), current_user=Depends(get_current_user)):
    return {"success": True, **store_logo(file)}
