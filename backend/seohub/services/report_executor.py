"""Execution of one scheduled GA4 report with failure tracking.

Flow for :func:`execute_report`:

1. create (or reuse a *queued*) :class:`ReportExecution` and mark it running
2. require GA4 tokens for the schedule owner (``OAUTH_INVALID``)
3. verify property access (``PROPERTY_ACCESS_DENIED``)
4. fetch GA4 data for the report type's date range
5. render HTML, store it under ``static/reports`` and e-mail recipients
6. on success reset the schedule's failure counters and unpause it

Failures are classified into :class:`ExecutionErrorCode` values; transient
codes get an exponential ``retry_after`` (5, 10, 20 minutes) until the third
attempt.  Five consecutive failures pause the schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Dict
from typing import Optional

from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.models.enums import ExecutionErrorCode
from seohub.models.enums import ExecutionStatus
from seohub.models.enums import ScheduleStatus
from seohub.models.models import ReportExecution
from seohub.models.models import ReportSchedule
from seohub.services import email_service
from seohub.services.ga4_service import GA4Service
from seohub.services.report_generator import ReportGenerator
from seohub.services.report_generator import store_report
from seohub.utils.log import get_logger
from seohub.utils.time import months_ago
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3
PAUSE_AFTER_CONSECUTIVE_FAILURES = 5
BASE_RETRY_DELAY_MINUTES = 5

_CRITICAL_CODES = {
    ExecutionErrorCode.OAUTH_EXPIRED,
    ExecutionErrorCode.OAUTH_INVALID,
    ExecutionErrorCode.PROPERTY_ACCESS_DENIED,
}

_RETRYABLE_CODES = {
    ExecutionErrorCode.API_RATE_LIMIT,
    ExecutionErrorCode.EMAIL_SEND_FAILED,
    ExecutionErrorCode.GENERATION_FAILED,
    ExecutionErrorCode.UNKNOWN_ERROR,
}


class ReportExecutionError(Exception):
    """Failure carrying an explicit :class:`ExecutionErrorCode`."""

    def __init__(self, message: str, code: ExecutionErrorCode):
        super().__init__(message)
        self.code = code


@dataclass
class ExecutionResult:
    success: bool
    execution_id: int
    report_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    should_retry: bool = False
    retry_after: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executionId": self.execution_id,
            "reportUrl": self.report_url,
            "error": self.error,
            "errorCode": self.error_code,
            "shouldRetry": self.should_retry,
            "retryAfter": self.retry_after.isoformat() if self.retry_after else None,
        }


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def determine_error_code(error: BaseException) -> ExecutionErrorCode:
    if isinstance(error, ReportExecutionError):
        return error.code

    message = str(error).lower()
    if "invalid_grant" in message or "token" in message or "expired" in message:
        return ExecutionErrorCode.OAUTH_EXPIRED
    if "rate limit" in message or "quota" in message:
        return ExecutionErrorCode.API_RATE_LIMIT
    if "permission" in message or "access denied" in message:
        return ExecutionErrorCode.PROPERTY_ACCESS_DENIED
    if "email" in message or "smtp" in message:
        return ExecutionErrorCode.EMAIL_SEND_FAILED
    if "pdf" in message or "generat" in message or "render" in message:
        return ExecutionErrorCode.GENERATION_FAILED
    return ExecutionErrorCode.UNKNOWN_ERROR


def should_retry(error_code: ExecutionErrorCode, attempt_count: int) -> bool:
    if attempt_count >= MAX_RETRY_ATTEMPTS:
        return False
    return error_code in _RETRYABLE_CODES


def calculate_retry_time(attempt_count: int, now: Optional[datetime] = None) -> datetime:
    delay = BASE_RETRY_DELAY_MINUTES * (2 ** (attempt_count - 1))
    return (now or utc_now_naive()) + timedelta(minutes=delay)


def is_critical(error_code: ExecutionErrorCode) -> bool:
    return error_code in _CRITICAL_CODES


def get_date_range(report_type: str, today=None) -> Dict[str, str]:
    """``{"startDate", "endDate"}`` ISO dates covering the report period."""

    end = today or utc_now_naive().date()
    if report_type == "MonthlyReport":
        start = months_ago(end, 1)
    elif report_type == "QuarterlyBusinessReview":
        start = months_ago(end, 3)
    else:
        start = end - timedelta(days=7)
    return {"startDate": start.isoformat(), "endDate": end.isoformat()}


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


# ---------------------------------------------------------------------------
# Report building (shared with the ad-hoc test endpoint)
# ---------------------------------------------------------------------------


def build_report_html(
    db: Session,
    *,
    user_id: int,
    property_id: str,
    report_type: str,
    branding_options: Optional[Dict[str, Any]],
    date_range: Dict[str, str],
) -> str:
    """Fetch GA4 data for *property_id* and render the report HTML."""

    if crud.get_ga4_token(db, user_id) is None:
        raise ReportExecutionError("No GA4 tokens found for user", ExecutionErrorCode.OAUTH_INVALID)

    ga4 = GA4Service.for_user(db, user_id)
    if not ga4.verify_property_access(property_id):
        raise ReportExecutionError(
            f"No access to GA4 property {property_id}", ExecutionErrorCode.PROPERTY_ACCESS_DENIED
        )

    data = ga4.fetch_report_data(property_id, date_range["startDate"], date_range["endDate"])
    return ReportGenerator(branding_options).generate_html(report_type, data, date_range)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def execute_report(
    db: Session,
    schedule: ReportSchedule,
    *,
    execution: Optional[ReportExecution] = None,
    is_manual_retry: bool = False,
    send_emails: bool = True,
) -> ExecutionResult:
    """Run *schedule* once; never raises for report-level failures."""

    report_type = _value(schedule.report_type)

    if execution is None:
        execution = crud.create_execution(
            db,
            schedule=schedule,
            status=ExecutionStatus.RUNNING.value,
            details={"reportType": report_type, "isManualRetry": is_manual_retry},
        )
    else:
        execution.status = ExecutionStatus.RUNNING.value
        execution.started_at = utc_now_naive()
        db.commit()

    schedule.status = ScheduleStatus.RUNNING.value
    db.commit()

    log = get_logger(schedule_id=schedule.id, execution_id=execution.id, attempt=execution.attempt_count)
    log.info("report_execution_started", report_type=report_type, manual=is_manual_retry)

    try:
        date_range = get_date_range(report_type)
        html = build_report_html(
            db,
            user_id=schedule.user_id,
            property_id=schedule.ga4_property_id,
            report_type=report_type,
            branding_options=schedule.branding_options,
            date_range=date_range,
        )
        report_url = store_report(html, agency_id=schedule.agency_id, schedule_id=schedule.id)

        recipients = list(schedule.email_recipients or [])
        if recipients and send_emails:
            try:
                email_service.send_report_email(
                    recipients=recipients,
                    report_type=report_type,
                    report_url=report_url,
                    agency_name=schedule.agency.name if schedule.agency else None,
                )
            except email_service.EmailDeliveryError as exc:
                raise ReportExecutionError(str(exc), ExecutionErrorCode.EMAIL_SEND_FAILED) from exc
    except Exception as exc:  # noqa: BLE001 – every failure is recorded on the execution
        return _handle_failure(db, schedule, execution, exc, log)

    now = utc_now_naive()
    execution.status = ExecutionStatus.COMPLETED.value
    execution.completed_at = now
    execution.report_url = report_url
    execution.emails_sent = bool(recipients) and send_emails

    schedule.last_execution_id = execution.id
    schedule.last_run = now
    schedule.last_success_at = now
    schedule.consecutive_failures = 0
    schedule.is_paused = False
    schedule.paused_reason = None
    schedule.status = ScheduleStatus.IDLE.value
    schedule.error_message = None

    crud.create_audit_log(
        db,
        action="GA4_REPORT_GENERATED",
        entity_type="report_schedule",
        entity_id=schedule.id,
        user_id=schedule.user_id,
        user_email=schedule.user.email if schedule.user else None,
        details={
            "executionId": execution.id,
            "reportType": report_type,
            "propertyId": schedule.ga4_property_id,
        },
        commit=False,
    )
    db.commit()

    log.info("report_execution_completed", report_url=report_url)
    return ExecutionResult(success=True, execution_id=execution.id, report_url=report_url)


def _handle_failure(db: Session, schedule: ReportSchedule, execution: ReportExecution, error: Exception, log):
    db.rollback()

    error_code = determine_error_code(error)
    message = str(error) or "Unknown error"
    retry = should_retry(error_code, execution.attempt_count)
    now = utc_now_naive()
    retry_after = calculate_retry_time(execution.attempt_count, now) if retry else None

    execution.status = ExecutionStatus.FAILED.value
    execution.failed_at = now
    execution.error = message
    execution.error_code = error_code.value
    execution.retry_after = retry_after

    failures = (schedule.consecutive_failures or 0) + 1
    newly_paused = failures >= PAUSE_AFTER_CONSECUTIVE_FAILURES and not schedule.is_paused

    schedule.last_execution_id = execution.id
    schedule.consecutive_failures = failures
    schedule.last_failure_at = now
    schedule.status = ScheduleStatus.IDLE.value
    schedule.error_message = message
    if newly_paused:
        schedule.is_paused = True
        schedule.paused_reason = f"Paused after {failures} consecutive failures: {message}"

    crud.create_audit_log(
        db,
        action="GA4_REPORT_FAILED",
        entity_type="report_schedule",
        entity_id=schedule.id,
        user_id=schedule.user_id,
        user_email=schedule.user.email if schedule.user else None,
        details={
            "executionId": execution.id,
            "errorCode": error_code.value,
            "error": message,
            "attemptCount": execution.attempt_count,
            "willRetry": retry,
        },
        commit=False,
    )
    db.commit()

    log.warning("report_execution_failed", error=message, error_code=error_code.value, will_retry=retry)

    if is_critical(error_code) or newly_paused:
        _send_failure_alert(db, schedule, message, error_code)

    return ExecutionResult(
        success=False,
        execution_id=execution.id,
        error=message,
        error_code=error_code.value,
        should_retry=retry,
        retry_after=retry_after,
    )


def _send_failure_alert(db: Session, schedule: ReportSchedule, message: str, error_code: ExecutionErrorCode):
    admins = crud.get_agency_admins(db, schedule.agency_id)
    if not admins:
        return
    try:
        email_service.send_failure_alert(
            recipients=[admin.email for admin in admins],
            report_type=_value(schedule.report_type),
            error=message,
            error_code=error_code.value,
            paused=schedule.is_paused,
        )
    except email_service.EmailDeliveryError:
        logger.exception("Failure alert for schedule %s could not be delivered", schedule.id)


def retry_failed_execution(db: Session, execution_id: int, *, manual: bool = True) -> ExecutionResult:
    """Re-run the schedule behind a failed execution as attempt ``n + 1``."""

    failed = crud.get_execution(db, execution_id)
    if failed is None:
        raise LookupError("Execution not found")
    if _value(failed.status) != ExecutionStatus.FAILED.value:
        raise ValueError("Only failed executions can be retried")

    retry = crud.create_execution(
        db,
        schedule=failed.schedule,
        status=ExecutionStatus.QUEUED.value,
        attempt_count=failed.attempt_count + 1,
        details={
            **(failed.details or {}),
            "retriedFromExecutionId": failed.id,
            "isManualRetry": manual,
        },
    )
    # The superseded failure must not be picked up again by the retry sweep.
    failed.retry_after = None
    db.commit()

    return execute_report(db, failed.schedule, execution=retry, is_manual_retry=manual)
