"""
Scheduler Service for scheduled GA4 reports.

This module provides the SchedulerService class that handles:
- Initializing and managing APScheduler
- Loading active report schedules from the database
- Running a schedule when its cron trigger fires
- A periodic sweep that retries failed executions once their backoff elapsed
"""

import asyncio
import logging
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from seohub.crud import crud
from seohub.database import get_session_factory
from seohub.events.event_bus import EventType
from seohub.events.event_bus import event_bus
from seohub.services import report_scheduler
from seohub.utils.cron import crontab_trigger

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "report_sweep"
SWEEP_INTERVAL_SECONDS = 60


def _job_id(schedule_id: int) -> str:
    return f"report_schedule_{schedule_id}"


class SchedulerService:
    """Keeps one APScheduler job per active report schedule."""

    def __init__(self, session_factory=None):
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._initialized = False
        self._session_factory = session_factory

    @property
    def session_factory(self):
        return self._session_factory or get_session_factory()

    async def start(self):
        """Start the scheduler if not already running."""
        if self._initialized:
            return

        await self.load_schedules()
        self._subscribe_to_events()

        self.scheduler.add_job(
            self.run_sweep,
            IntervalTrigger(seconds=SWEEP_INTERVAL_SECONDS),
            id=SWEEP_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        self._initialized = True
        logger.info("Report scheduler started")

    async def stop(self):
        """Shutdown the scheduler gracefully."""
        if not self._initialized:
            return
        self.scheduler.shutdown(wait=False)
        self._unsubscribe_from_events()
        self._initialized = False
        logger.info("Report scheduler stopped")

    def _subscribe_to_events(self):
        event_bus.subscribe(EventType.SCHEDULE_CREATED, self._handle_schedule_changed)
        event_bus.subscribe(EventType.SCHEDULE_UPDATED, self._handle_schedule_changed)
        event_bus.subscribe(EventType.SCHEDULE_DELETED, self._handle_schedule_deleted)

    def _unsubscribe_from_events(self):
        event_bus.unsubscribe(EventType.SCHEDULE_CREATED, self._handle_schedule_changed)
        event_bus.unsubscribe(EventType.SCHEDULE_UPDATED, self._handle_schedule_changed)
        event_bus.unsubscribe(EventType.SCHEDULE_DELETED, self._handle_schedule_deleted)

    async def _handle_schedule_changed(self, data):
        schedule_id = data.get("id")
        if schedule_id is None:
            return

        db = self.session_factory()
        try:
            schedule = crud.get_schedule(db, schedule_id)
            active = schedule is not None and schedule.is_active and not schedule.is_paused
            cron_pattern = schedule.cron_pattern if schedule else None
        finally:
            db.close()

        if active:
            self.schedule_report(schedule_id, cron_pattern)
        else:
            self.remove_schedule_job(schedule_id)

    async def _handle_schedule_deleted(self, data):
        schedule_id = data.get("id")
        if schedule_id is not None:
            self.remove_schedule_job(schedule_id)

    async def load_schedules(self):
        """Register a job for every active, unpaused schedule."""
        db = self.session_factory()
        try:
            rows = [(s.id, s.cron_pattern) for s in crud.get_schedules(db, active_only=True)]
        finally:
            db.close()

        for schedule_id, cron_pattern in rows:
            self.schedule_report(schedule_id, cron_pattern)

    def schedule_report(self, schedule_id: int, cron_pattern: str):
        try:
            trigger = crontab_trigger(cron_pattern)
        except ValueError as exc:
            logger.error("Not scheduling report %s, invalid cron %r: %s", schedule_id, cron_pattern, exc)
            return

        self.scheduler.add_job(
            self.run_report_job,
            trigger,
            args=[schedule_id],
            id=_job_id(schedule_id),
            replace_existing=True,
        )
        logger.info("Scheduled report %s with cron: %s", schedule_id, cron_pattern)

    def remove_schedule_job(self, schedule_id: int):
        job_id = _job_id(schedule_id)
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            logger.info("Removed job for report schedule %s", schedule_id)

    async def run_report_job(self, schedule_id: int):
        """Cron entry point; the blocking work runs in a worker thread."""
        try:
            await asyncio.to_thread(report_scheduler.run_cron_job, schedule_id, self.session_factory)
        except Exception:
            logger.exception("Scheduled report %s failed unexpectedly", schedule_id)

    async def run_sweep(self):
        def _sweep():
            db = self.session_factory()
            try:
                return report_scheduler.retry_due_executions(db)
            finally:
                db.close()

        try:
            retried = await asyncio.to_thread(_sweep)
        except Exception:
            logger.exception("Report sweep failed")
            return
        if retried:
            logger.info("Report sweep retried %d execution(s)", retried)


# Global instance of the scheduler service
scheduler_service = SchedulerService()
