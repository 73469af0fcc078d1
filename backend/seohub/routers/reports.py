"""Scheduled GA4 reports: schedule CRUD, pause/resume, retries, the
failed-execution console and the external cron trigger.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import is_admin
from seohub.dependencies.auth import is_super_admin
from seohub.dependencies.auth import require_agency
from seohub.events import EventType
from seohub.events import event_bus
from seohub.models.enums import ExecutionErrorCode
from seohub.models.enums import ExecutionStatus
from seohub.models.enums import ScheduleStatus
from seohub.schemas.schemas import PauseIn
from seohub.schemas.schemas import ReportTestIn
from seohub.schemas.schemas import ScheduleCreate
from seohub.schemas.schemas import ScheduleOut
from seohub.schemas.schemas import ScheduleUpdate
from seohub.schemas.schemas import serialize
from seohub.services import report_executor
from seohub.services import report_generator
from seohub.services import report_scheduler
from seohub.services.ga4_service import GA4APIError
from seohub.services.google_oauth import GoogleAuthError
from seohub.services.report_executor import ReportExecutionError
from seohub.services.report_generator import ReportGenerationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

_OAUTH_CODES = {ExecutionErrorCode.OAUTH_EXPIRED, ExecutionErrorCode.OAUTH_INVALID}


def _value(enum_or_str):
    return getattr(enum_or_str, "value", enum_or_str)


def _can_manage(user, schedule) -> bool:
    """Owner, an admin of the schedule's agency, or a super admin."""

    if is_super_admin(user):
        return True
    if is_admin(user) and user.agency_id == schedule.agency_id:
        return True
    return schedule.user_id == user.id


def _audit(db: Session, user, action: str, entity_id: int, details: dict, *, entity_type: str = "report_schedule"):
    crud.create_audit_log(
        db,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user.id,
        user_email=user.email,
        details=details,
        commit=False,
    )


def _extract_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


# ---------------------------------------------------------------------------
# Schedule CRUD
# ---------------------------------------------------------------------------


@router.get("/schedules")
def list_schedules(db: Session = Depends(get_db), current_user=Depends(require_agency)):
    schedules = crud.get_schedules(db, agency_id=current_user.agency_id)
    return {"schedules": [serialize(ScheduleOut, s) for s in schedules]}


@router.post("/schedules", status_code=status.HTTP_201_CREATED)
async def create_schedule(body: ScheduleCreate, db: Session = Depends(get_db), current_user=Depends(require_agency)):
    try:
        schedule = crud.create_schedule(
            db,
            agency_id=current_user.agency_id,
            user_id=current_user.id,
            cron_pattern=body.cron_pattern,
            ga4_property_id=body.ga4_property_id,
            report_type=body.report_type.value,
            email_recipients=body.email_recipients,
            branding_options=body.branding_options,
            is_active=body.is_active,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    crud.create_audit_log(
        db,
        action="REPORT_SCHEDULE_CREATED",
        entity_type="report_schedule",
        entity_id=schedule.id,
        user_id=current_user.id,
        user_email=current_user.email,
        details={"cronPattern": schedule.cron_pattern, "reportType": _value(schedule.report_type)},
    )
    await event_bus.publish(EventType.SCHEDULE_CREATED, {"id": schedule.id})
    return {"schedule": serialize(ScheduleOut, schedule)}


@router.put("/schedules/{schedule_id}")
async def update_schedule(
    schedule_id: int,
    body: ScheduleUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_agency),
):
    schedule = crud.get_schedule(db, schedule_id, agency_id=current_user.agency_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")

    fields = body.model_dump(exclude_unset=True)
    if body.report_type is not None:
        fields["report_type"] = body.report_type.value
    try:
        schedule = crud.update_schedule(db, schedule, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await event_bus.publish(EventType.SCHEDULE_UPDATED, {"id": schedule.id})
    return {"schedule": serialize(ScheduleOut, schedule)}


@router.delete("/schedules/{schedule_id}")
async def delete_schedule(schedule_id: int, db: Session = Depends(get_db), current_user=Depends(require_agency)):
    schedule = crud.get_schedule(db, schedule_id, agency_id=current_user.agency_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")

    crud.delete_schedule(db, schedule)
    await event_bus.publish(EventType.SCHEDULE_DELETED, {"id": schedule_id})
    return {"success": True}


# ---------------------------------------------------------------------------
# Pause / resume / retry
# ---------------------------------------------------------------------------


@router.post("/schedules/{schedule_id}/pause")
async def pause_schedule(
    schedule_id: int,
    body: Optional[PauseIn] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    schedule = crud.get_schedule(db, schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report schedule not found")
    if not _can_manage(current_user, schedule):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    reason = (body.reason if body else None) or "Manually paused by user"
    schedule.is_paused = True
    schedule.paused_reason = reason
    _audit(db, current_user, "GA4_REPORT_SCHEDULE_PAUSED", schedule.id, {"reason": reason})
    db.commit()
    db.refresh(schedule)

    await event_bus.publish(EventType.SCHEDULE_UPDATED, {"id": schedule.id})
    return {"success": True, "schedule": serialize(ScheduleOut, schedule)}


@router.delete("/schedules/{schedule_id}/pause")
async def resume_schedule(schedule_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    schedule = crud.get_schedule(db, schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report schedule not found")
    if not _can_manage(current_user, schedule):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    schedule.is_paused = False
    schedule.paused_reason = None
    schedule.consecutive_failures = 0
    _audit(db, current_user, "GA4_REPORT_SCHEDULE_RESUMED", schedule.id, {"reason": "Manually resumed by user"})
    db.commit()
    db.refresh(schedule)

    await event_bus.publish(EventType.SCHEDULE_UPDATED, {"id": schedule.id})
    return {"success": True, "schedule": serialize(ScheduleOut, schedule)}


@router.post("/schedules/{schedule_id}/retry")
def retry_schedule(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if not (is_admin(current_user) or is_super_admin(current_user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    schedule = crud.get_schedule(db, schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report schedule not found")
    if schedule.agency_id != current_user.agency_id and not is_super_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    schedule.status = ScheduleStatus.QUEUED.value
    schedule.error_message = None
    _audit(db, current_user, "REPORT_SCHEDULE_RETRY", schedule.id, {"agencyId": schedule.agency_id})
    db.commit()

    background_tasks.add_task(report_scheduler.run_schedule_in_background, schedule.id)
    logger.info("Schedule %s queued for retry by %s", schedule.id, current_user.email)
    return {"success": True, "message": "Report schedule retry has been queued successfully."}


@router.post("/retry/{execution_id}")
def retry_execution(execution_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    execution = crud.get_execution(db, execution_id)
    if execution is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")

    schedule = execution.schedule
    if not _can_manage(current_user, schedule):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions to retry this report"
        )
    if _value(execution.status) != ExecutionStatus.FAILED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only failed executions can be retried")

    if schedule.is_paused:
        schedule.is_paused = False
        schedule.paused_reason = None
        _audit(db, current_user, "GA4_REPORT_SCHEDULE_RESUMED", schedule.id, {"reason": "Manual retry initiated"})

    _audit(
        db,
        current_user,
        "GA4_REPORT_RETRY",
        execution.id,
        {"scheduleId": schedule.id, "previousError": execution.error, "previousErrorCode": execution.error_code},
        entity_type="report_execution",
    )
    db.commit()

    try:
        result = report_executor.retry_failed_execution(db, execution_id, manual=True)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    payload = result.to_dict()
    payload["message"] = "Report retry initiated successfully" if result.success else f"Retry failed: {result.error}"
    return payload


# ---------------------------------------------------------------------------
# Failed executions
# ---------------------------------------------------------------------------


@router.get("/failed")
def list_failed_executions(
    agency_id: Optional[int] = Query(None, alias="agencyId"),
    status_filter: str = Query("failed", alias="status", pattern="^(failed|all)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if is_super_admin(current_user):
        scope = agency_id
    elif is_admin(current_user) and current_user.agency_id is not None:
        scope = current_user.agency_id
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    executions, total = crud.get_executions(
        db,
        agency_id=scope,
        status=ExecutionStatus.FAILED.value if status_filter == "failed" else None,
        skip=offset,
        limit=limit,
    )

    rows = []
    for execution in executions:
        schedule = execution.schedule
        failed = _value(execution.status) == ExecutionStatus.FAILED.value
        rows.append(
            {
                "id": execution.id,
                "scheduleId": execution.schedule_id,
                "status": _value(execution.status),
                "attemptCount": execution.attempt_count,
                "failedAt": execution.failed_at.isoformat() if execution.failed_at else None,
                "error": execution.error,
                "errorCode": execution.error_code,
                "retryAfter": execution.retry_after.isoformat() if execution.retry_after else None,
                "canRetry": failed and execution.attempt_count < report_executor.MAX_RETRY_ATTEMPTS,
                "schedule": {
                    "id": schedule.id,
                    "reportType": _value(schedule.report_type),
                    "ga4PropertyId": schedule.ga4_property_id,
                    "isPaused": schedule.is_paused,
                    "consecutiveFailures": schedule.consecutive_failures,
                    "user": {"id": schedule.user.id, "email": schedule.user.email, "name": schedule.user.name}
                    if schedule.user
                    else None,
                    "agency": {"id": schedule.agency.id, "name": schedule.agency.name} if schedule.agency else None,
                },
            }
        )

    return {
        "executions": rows,
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }


# ---------------------------------------------------------------------------
# External cron trigger
# ---------------------------------------------------------------------------


@router.post("/trigger-scheduled-jobs")
def trigger_scheduled_jobs(
    db: Session = Depends(get_db),
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
):
    secret = get_settings().report_trigger_secret
    if not secret:
        logger.error("REPORT_TRIGGER_SECRET is not set")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    provided = _extract_api_key(x_api_key, authorization)
    if not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    summary = report_scheduler.process_due_schedules(db)
    message = "Scheduled jobs processed." if summary["totalDue"] else "No due schedules to process."
    return {"message": message, **summary}


# ---------------------------------------------------------------------------
# Ad-hoc test report
# ---------------------------------------------------------------------------


@router.post("/test")
def generate_test_report(body: ReportTestIn, db: Session = Depends(get_db), current_user=Depends(require_agency)):
    if body.report_type is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Report type is required")

    agency = current_user.agency
    if not agency.ga4_property_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No GA4 property connected for this agency.")

    if body.date_range_string and "/" in body.date_range_string:
        start, end = body.date_range_string.split("/", 1)
        date_range = {"startDate": start, "endDate": end}
    else:
        date_range = report_executor.get_date_range(body.report_type.value)

    try:
        html = report_executor.build_report_html(
            db,
            user_id=current_user.id,
            property_id=agency.ga4_property_id,
            report_type=body.report_type.value,
            branding_options=body.branding_options or {"agencyName": agency.name},
            date_range=date_range,
        )
    except ReportExecutionError as exc:
        code = status.HTTP_401_UNAUTHORIZED if exc.code in _OAUTH_CODES else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    except GoogleAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except GA4APIError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except ReportGenerationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    report_url = report_generator.store_report(html, agency_id=agency.id)
    return {
        "success": True,
        "message": "Test report generated successfully.",
        "reportType": body.report_type.value,
        "ga4PropertyId": agency.ga4_property_id,
        "dateRange": date_range,
        "reportUrl": report_url,
    }
