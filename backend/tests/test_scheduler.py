"""Tests for the report scheduler service and due-schedule processing."""

from datetime import datetime
from datetime import timedelta
from unittest.mock import patch

import pytest

from seohub.crud import crud
from seohub.events.event_bus import EventBus
from seohub.events.event_bus import EventType
from seohub.services import report_executor
from seohub.services import report_scheduler
from seohub.services.scheduler_service import SWEEP_JOB_ID
from seohub.services.scheduler_service import SchedulerService
from seohub.utils.time import utc_now_naive


class TestSchedulerService:
    """Job registration driven by the database and schedule events."""

    @pytest.fixture
    def service(self, db_session):
        return SchedulerService()

    @pytest.mark.asyncio
    async def test_load_schedules_registers_active_only(self, service, db_session, agency, admin_user, schedule):
        paused = crud.create_schedule(
            db_session,
            agency_id=agency.id,
            user_id=admin_user.id,
            cron_pattern="0 8 * * *",
            ga4_property_id="123456",
            report_type="MonthlyReport",
            email_recipients=["owner@acme.test"],
        )
        paused.is_paused = True
        db_session.commit()

        await service.load_schedules()

        assert service.scheduler.get_job(f"report_schedule_{schedule.id}") is not None
        assert service.scheduler.get_job(f"report_schedule_{paused.id}") is None

    def test_invalid_cron_adds_no_job(self, service):
        service.schedule_report(7, "not a cron")
        assert service.scheduler.get_job("report_schedule_7") is None

    def test_remove_schedule_job(self, service):
        service.schedule_report(7, "*/15 * * * *")
        assert service.scheduler.get_job("report_schedule_7") is not None

        service.remove_schedule_job(7)
        assert service.scheduler.get_job("report_schedule_7") is None
        # Removing twice is a no-op.
        service.remove_schedule_job(7)

    @pytest.mark.asyncio
    async def test_pausing_a_schedule_removes_its_job(self, service, db_session, schedule):
        await service._handle_schedule_changed({"id": schedule.id})
        assert service.scheduler.get_job(f"report_schedule_{schedule.id}") is not None

        schedule.is_paused = True
        db_session.commit()

        await service._handle_schedule_changed({"id": schedule.id})
        assert service.scheduler.get_job(f"report_schedule_{schedule.id}") is None

    @pytest.mark.asyncio
    async def test_deleted_schedule_removes_job(self, service, schedule):
        service.schedule_report(schedule.id, schedule.cron_pattern)

        await service._handle_schedule_deleted({"id": schedule.id})
        assert service.scheduler.get_job(f"report_schedule_{schedule.id}") is None

    @pytest.mark.asyncio
    async def test_unknown_schedule_event_is_ignored(self, service, db_session):
        await service._handle_schedule_changed({})
        await service._handle_schedule_changed({"id": 4242})
        assert service.scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_start_adds_sweep_and_subscribes(self, service, db_session):
        bus = EventBus()
        with patch("seohub.services.scheduler_service.event_bus", bus), patch.object(service.scheduler, "start"):
            await service.start()
            assert service.scheduler.get_job(SWEEP_JOB_ID) is not None
            assert EventType.SCHEDULE_UPDATED in bus._subscribers

            with patch.object(service.scheduler, "shutdown") as shutdown:
                await service.stop()
            shutdown.assert_called_once_with(wait=False)
            assert bus._subscribers == {}

    @pytest.mark.asyncio
    async def test_report_job_runs_cron_entry_point(self, service):
        with patch("seohub.services.scheduler_service.report_scheduler.run_cron_job") as run:
            await service.run_report_job(3)
        run.assert_called_once()
        assert run.call_args.args[0] == 3

    @pytest.mark.asyncio
    async def test_report_job_errors_are_logged(self, service):
        with patch(
            "seohub.services.scheduler_service.report_scheduler.run_cron_job", side_effect=RuntimeError("boom")
        ):
            # Does not raise.
            await service.run_report_job(3)

    @pytest.mark.asyncio
    async def test_sweep_retries_due_executions(self, service):
        with patch(
            "seohub.services.scheduler_service.report_scheduler.retry_due_executions", return_value=2
        ) as sweep:
            await service.run_sweep()
        sweep.assert_called_once()


class TestDueSchedules:
    def test_cron_job_skips_paused_schedule(self, db_session, schedule, ga4_token, fake_ga4, sent_emails):
        schedule.is_paused = True
        db_session.commit()

        report_scheduler.run_cron_job(schedule.id)

        assert fake_ga4.fetches == []
        assert crud.get_executions(db_session, agency_id=schedule.agency_id)[1] == 0

    def test_cron_job_runs_and_advances(self, db_session, schedule, ga4_token, fake_ga4, sent_emails):
        report_scheduler.run_cron_job(schedule.id)

        db_session.expire_all()
        schedule = crud.get_schedule(db_session, schedule.id)
        assert schedule.last_run is not None
        assert schedule.next_run > schedule.last_run
        assert len(sent_emails) == 1

    def test_process_due_schedules_counts_failures(self, db_session, schedule, ga4_token, fake_ga4, sent_emails):
        schedule.next_run = utc_now_naive() - timedelta(minutes=1)
        db_session.commit()
        fake_ga4.error = RuntimeError("something odd")

        summary = report_scheduler.process_due_schedules(db_session)

        assert summary == {"processedCount": 0, "errorCount": 1, "totalDue": 1, "retriedCount": 0}

    def test_unexpected_error_does_not_stop_other_schedules(
        self, db_session, agency, admin_user, schedule, ga4_token, fake_ga4, sent_emails
    ):
        second = crud.create_schedule(
            db_session,
            agency_id=agency.id,
            user_id=admin_user.id,
            cron_pattern="0 8 * * *",
            ga4_property_id="123456",
            report_type="MonthlyReport",
            email_recipients=["owner@acme.test"],
        )
        past = utc_now_naive() - timedelta(minutes=1)
        schedule.next_run = past
        second.next_run = past
        db_session.commit()

        real_execute = report_executor.execute_report
        calls = []

        def flaky_execute(db, target, **kwargs):
            calls.append(target.id)
            if len(calls) == 1:
                raise RuntimeError("database hiccup")
            return real_execute(db, target, **kwargs)

        with patch.object(report_executor, "execute_report", side_effect=flaky_execute):
            summary = report_scheduler.process_due_schedules(db_session)

        assert summary["totalDue"] == 2
        assert summary["errorCount"] == 1
        assert summary["processedCount"] == 1
        assert len(calls) == 2

    def test_retry_sweep_picks_up_elapsed_failures(self, db_session, schedule, ga4_token, fake_ga4, sent_emails):
        fake_ga4.error = RuntimeError("something odd")
        failed = report_executor.execute_report(db_session, schedule)
        assert failed.should_retry

        # Backoff not yet elapsed.
        assert report_scheduler.retry_due_executions(db_session) == 0

        fake_ga4.error = None
        later = failed.retry_after + timedelta(seconds=1)
        assert report_scheduler.retry_due_executions(db_session, now=later) == 1

        db_session.refresh(schedule)
        latest = crud.get_execution(db_session, schedule.last_execution_id)
        assert latest.status == "completed"
        assert latest.attempt_count == 2
        assert latest.details["isManualRetry"] is False
        # The superseded failure is not retried again.
        assert report_scheduler.retry_due_executions(db_session, now=later) == 0

    def test_background_runner_ignores_missing_schedule(self, db_session):
        report_scheduler.run_schedule_in_background(4242)


def test_next_run_from_monday_schedule():
    from seohub.utils.cron import calculate_next_run

    # 2024-05-01 is a Wednesday; "1" is Monday in crontab.
    assert calculate_next_run("0 9 * * 1", datetime(2024, 5, 1, 12, 0)) == datetime(2024, 5, 6, 9, 0)
