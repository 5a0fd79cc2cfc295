"""
Tests for Celery wiring: beat schedule, routing, enqueue helpers and
progress reporting.
"""

import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.celery_app import celery_app
from app.tasks import celery_tasks


class TestSchedule:
    """Beat entries point at registered tasks"""

    def test_beat_tasks_are_registered(self):
        registered = set(celery_app.tasks.keys())
        for entry in celery_app.conf.beat_schedule.values():
            assert entry["task"] in registered

    def test_daily_jobs(self):
        schedule = celery_app.conf.beat_schedule
        assert schedule["compliance-refresh-daily"]["schedule"].hour == {2}
        assert schedule["expiry-notifications-daily"]["schedule"].hour == {8}
        assert schedule["filing-reminders-daily"]["schedule"].hour == {8}

    def test_queue_routing(self):
        routes = celery_app.conf.task_routes
        assert routes["app.tasks.celery_tasks.compliance_refresh_task"] == {"queue": "compliance"}
        assert routes["app.tasks.celery_tasks.send_notification_email_task"] == {"queue": "email"}


class TestEnqueue:

    def test_refresh_for_one_tenant(self):
        tenant_id = uuid.uuid4()
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-7")

        with patch("app.tasks.celery_tasks.compliance_refresh_task", task):
            task_id = celery_tasks.enqueue_compliance_refresh(tenant_id=tenant_id, triggered_by="manual")

        assert task_id == "task-7"
        task.delay.assert_called_once_with(tenant_id=str(tenant_id), triggered_by="manual")

    def test_expiry_check_for_all_tenants(self):
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-8")

        with patch("app.tasks.celery_tasks.expiry_notifications_task", task):
            task_id = celery_tasks.enqueue_expiry_check()

        assert task_id == "task-8"
        task.delay.assert_called_once_with(tenant_id=None, triggered_by="manual")

    def test_filing_reminders(self):
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-9")

        with patch("app.tasks.celery_tasks.filing_reminders_task", task):
            assert celery_tasks.enqueue_filing_reminders(triggered_by="cron") == "task-9"


class TestProgressReporter:

    def test_publishes_progress_state(self):
        tenant_id = uuid.uuid4()
        task = MagicMock()
        task.request.id = "task-1"

        celery_tasks._progress_reporter(task)(2, 5, tenant_id)

        task.update_state.assert_called_once_with(
            state="PROGRESS",
            meta={"current": 2, "total": 5, "tenant_id": str(tenant_id)},
        )

    def test_silent_outside_a_worker(self):
        task = MagicMock()
        task.request.id = None

        celery_tasks._progress_reporter(task)(1, 1, uuid.uuid4())

        task.update_state.assert_not_called()

    def test_tenant_id_parsing(self):
        tenant_id = uuid.uuid4()
        assert celery_tasks._parse_tenant_id(str(tenant_id)) == tenant_id
        assert celery_tasks._parse_tenant_id(None) is None
