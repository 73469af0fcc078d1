"""Dealership onboarding submissions and SEO package progress."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import require_agency
from seohub.models.enums import OnboardingStatus
from seohub.schemas.schemas import OnboardingIn
from seohub.schemas.schemas import OnboardingOut
from seohub.schemas.schemas import serialize
from seohub.services import onboarding as onboarding_service
from seohub.services import task_context
from seohub.services.seo_packages import SEO_PACKAGES
from seohub.services.seo_packages import calculate_package_progress
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

router = APIRouter(tags=["onboarding"], dependencies=[Depends(get_current_user)])


@router.post("/onboarding")
def submit_onboarding(body: OnboardingIn, db: Session = Depends(get_db), current_user=Depends(require_agency)):
    form = body.model_dump()
    seowerks_data = onboarding_service.transform_to_seowerks(form)
    missing = onboarding_service.validate_seowerks_data(seowerks_data)
    if missing:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation failed", "missingFields": missing},
        )

    record = crud.create_onboarding(
        db,
        agency_id=current_user.agency_id,
        user_id=current_user.id,
        submitted_by=current_user.email,
        **{**form, "package": body.package.value},
    )

    webhook_result = onboarding_service.submit_to_webhook(body.model_dump(by_alias=True, mode="json"))
    seowerks_result = onboarding_service.submit_to_seowerks(seowerks_data)

    succeeded = webhook_result["success"]
    record.status = OnboardingStatus.SUBMITTED.value if succeeded else OnboardingStatus.FAILED.value
    record.seoworks_response = {"webhookResult": webhook_result, "seoworksResult": seowerks_result}
    record.submitted_at = utc_now_naive() if succeeded else None
    if succeeded:
        current_user.onboarding_completed = True

    crud.create_audit_log(
        db,
        action="ONBOARDING_SUBMITTED",
        entity_type="dealership_onboarding",
        entity_id=record.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={
            "webhookSuccess": succeeded,
            "seoworksSuccess": seowerks_result["success"],
            "businessName": body.business_name,
            "package": body.package.value,
        },
        commit=False,
    )
    db.commit()
    task_context.invalidate(current_user.agency_id)

    if not succeeded:
        logger.error("Onboarding %s for agency %s failed to submit", record.id, current_user.agency_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to submit onboarding",
                "webhookError": webhook_result.get("error"),
                "seoworksError": seowerks_result.get("error"),
            },
        )

    return {
        "success": True,
        "message": "Onboarding submitted successfully",
        "onboardingId": record.id,
        "referenceId": webhook_result.get("referenceId"),
    }


@router.get("/onboarding")
def list_onboardings(db: Session = Depends(get_db), current_user=Depends(require_agency)):
    records = crud.get_onboardings(db, current_user.agency_id, limit=10)
    return {"onboardings": [serialize(OnboardingOut, r) for r in records]}


@router.get("/package-progress")
def package_progress(
    package: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(require_agency),
):
    """Progress of the agency's package; defaults to the latest onboarding's package."""

    if package is None:
        latest = crud.get_latest_onboarding(db, current_user.agency_id)
        if latest is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No onboarding found for agency")
        package = getattr(latest.package, "value", latest.package)

    package = package.upper()
    if package not in SEO_PACKAGES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")

    return {"success": True, "data": calculate_package_progress(db, current_user.agency_id, package)}
