"""Due-schedule processing shared by the trigger endpoint and the poller."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Optional

from sqlalchemy.orm import Session

from seohub.crud import crud
from seohub.database import db_session
from seohub.models.models import ReportSchedule
from seohub.services import report_executor
from seohub.utils.cron import calculate_next_run
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


def run_schedule(db: Session, schedule: ReportSchedule, *, now: Optional[datetime] = None):
    """Execute *schedule* once and advance ``last_run``/``next_run``."""

    now = now or utc_now_naive()
    result = report_executor.execute_report(db, schedule)
    schedule.last_run = now
    schedule.next_run = calculate_next_run(schedule.cron_pattern, now)
    db.commit()
    return result


def process_due_schedules(db: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Run every due schedule, then retry failed executions whose backoff elapsed.

    Each schedule is processed independently; an unexpected error in one is
    counted and does not stop the rest.
    """

    now = now or utc_now_naive()
    due = crud.get_due_schedules(db, now)
    logger.info("Processing %d due report schedule(s)", len(due))

    processed = 0
    errors = 0
    for schedule in due:
        try:
            result = run_schedule(db, schedule, now=now)
        except Exception:
            db.rollback()
            logger.exception("Unexpected error processing report schedule %s", schedule.id)
            errors += 1
            continue
        if result.success:
            processed += 1
        else:
            errors += 1

    retried = retry_due_executions(db, now=now)
    return {
        "processedCount": processed,
        "errorCount": errors,
        "totalDue": len(due),
        "retriedCount": retried,
    }


def retry_due_executions(db: Session, *, now: Optional[datetime] = None) -> int:
    """Automatically retry failed executions whose ``retry_after`` has passed."""

    now = now or utc_now_naive()
    retried = 0
    for execution in crud.get_retryable_executions(db, now, max_attempts=report_executor.MAX_RETRY_ATTEMPTS):
        try:
            report_executor.retry_failed_execution(db, execution.id, manual=False)
        except (LookupError, ValueError) as exc:
            logger.warning("Skipping retry of execution %s: %s", execution.id, exc)
            continue
        retried += 1
    if retried:
        logger.info("Retried %d failed report execution(s)", retried)
    return retried


def run_schedule_in_background(schedule_id: int) -> None:
    """BackgroundTasks entry point for an admin-queued schedule retry."""

    with db_session() as db:
        schedule = crud.get_schedule(db, schedule_id)
        if schedule is None:
            logger.warning("Queued report schedule %s no longer exists", schedule_id)
            return
        run_schedule(db, schedule)


def run_cron_job(schedule_id: int, session_factory=None) -> None:
    """Cron-trigger entry point; inactive or paused schedules are skipped."""

    with db_session(session_factory) as db:
        schedule = crud.get_schedule(db, schedule_id)
        if schedule is None or not schedule.is_active or schedule.is_paused:
            logger.info("Skipping cron run of report schedule %s", schedule_id)
            return
        run_schedule(db, schedule)
