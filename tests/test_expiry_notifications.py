"""
Tests for the document expiry notification engine.

Exact-threshold matching, at-most-once creation per recipient, role
filtering and enqueue-after-commit.
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.models.audit import AuditAction
from app.models.notification import Notification
from app.services.audit_service import AuditService
from app.services.expiry_notification_service import ExpiryNotificationService
from app.services.threshold_notifications import days_until, urgency_for
from app.utils.error_handling import TenantNotFoundException

from conftest import NOW, TODAY, FakeQueue


async def all_notifications(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(Notification))).scalars().all()


async def seed(build, days=7, status="valid", role="compliance_officer"):
    tenant = await build.tenant()
    officer = await build.user(tenant, role, email="officer@example.com", full_name="Ada Obi")
    client = await build.client(tenant, name="Acme Ltd")
    tcc = await build.document_type(tenant)
    document = await build.document(client, tcc, title="TCC 2026", status=status, expiry_date=TODAY + timedelta(days=days))
    return tenant, officer, document


class TestDaysUntil:
    """Whole days to the start of the deadline, rounded up"""

    def test_partial_day_rounds_up(self):
        assert days_until(date(2026, 10, 26), datetime(2026, 10, 19, 8, 0)) == 7

    def test_midnight_is_exact(self):
        assert days_until(date(2026, 10, 26), datetime(2026, 10, 19)) == 7

    def test_deadline_today(self):
        assert days_until(date(2026, 10, 19), datetime(2026, 10, 19, 8, 0)) == 0

    def test_aware_time_is_read_as_utc(self):
        assert days_until(date(2026, 10, 26), datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)) == 7
        lagos = timezone(timedelta(hours=1))
        assert days_until(date(2026, 10, 26), datetime(2026, 10, 19, 0, 30, tzinfo=lagos)) == 8

    @pytest.mark.parametrize("days,label", [(3, "URGENT"), (7, "URGENT"), (14, "HIGH"), (30, "NORMAL")])
    def test_urgency_bands(self, days, label):
        assert urgency_for(days, ((7, "URGENT"), (14, "HIGH"))) == label


class TestExpiryScan:
    """Daily scan for documents hitting a threshold"""

    @pytest.mark.asyncio
    async def test_creates_one_notification_and_job(self, db_session, build, session_factory, queue):
        tenant, officer, document = await seed(build, days=7)
        await build.user(tenant, "viewer")
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert result.status == "completed"
        assert result.notifications_created == 1
        assert result.jobs_enqueued == 1

        job = queue.jobs[0]
        assert job.recipient_email == "officer@example.com"
        assert job.recipient_name == "Ada Obi"
        assert job.template == "document-expiry"
        assert job.subject == "URGENT: Document Expiring Soon"
        assert job.data["days_until_expiry"] == 7
        assert job.data["document_id"] == str(document.id)

        notifications = await all_notifications(session_factory)
        assert len(notifications) == 1
        notification = notifications[0]
        assert str(notification.id) == job.notification_id
        assert notification.recipient_user_id == officer.id
        assert notification.kind == "document_expiry"
        assert notification.threshold_days == 7
        assert notification.priority == "urgent"
        assert notification.status == "pending"
        assert notification.queued_at is not None
        assert notification.message == 'URGENT: Document "TCC 2026" for client Acme Ltd expires in 7 day(s)'

    @pytest.mark.asyncio
    async def test_rerun_same_day_creates_nothing(self, db_session, build, session_factory, queue):
        await seed(build, days=7)
        await db_session.commit()

        service = ExpiryNotificationService(session_factory, queue)
        await service.run(now=NOW)
        second = await service.run(now=NOW + timedelta(hours=2))

        assert second.notifications_created == 0
        assert second.jobs_enqueued == 0
        assert len(queue.jobs) == 1
        assert len(await all_notifications(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_missed_threshold_is_not_caught_up(self, db_session, build, session_factory, queue):
        await seed(build, days=7)
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW + timedelta(days=1))

        assert result.sources_checked == 1
        assert result.notifications_created == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days,urgency", [(14, "HIGH"), (30, "NORMAL")])
    async def test_other_thresholds(self, db_session, build, session_factory, queue, days, urgency):
        await seed(build, days=days)
        await db_session.commit()

        await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert queue.jobs[0].subject == f"{urgency}: Document Expiring Soon"
        assert queue.jobs[0].data["threshold"] == days

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, db_session, build, session_factory, queue):
        await seed(build, days=10)
        await db_session.commit()

        await ExpiryNotificationService(session_factory, queue, thresholds=[10]).run(now=NOW)

        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_only_valid_documents(self, db_session, build, session_factory, queue):
        await seed(build, days=7, status="pending_review")
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert result.sources_checked == 0
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_only_current_version(self, db_session, build, session_factory, queue):
        tenant = await build.tenant()
        await build.user(tenant, "admin")
        client = await build.client(tenant)
        tcc = await build.document_type(tenant)
        await build.document(client, tcc, versions=[
            {"expiry_date": TODAY + timedelta(days=7), "is_current": False},
            {"expiry_date": TODAY + timedelta(days=365), "is_current": True},
        ])
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert result.notifications_created == 0

    @pytest.mark.asyncio
    async def test_every_notifying_role_gets_one(self, db_session, build, session_factory, queue):
        tenant, _, _ = await seed(build, days=7)
        await build.user(tenant, "admin")
        await build.user(tenant, "manager")
        await build.user(tenant, "tax_preparer")
        await build.user(tenant, "compliance_officer", is_active=False)
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert result.notifications_created == 3

    @pytest.mark.asyncio
    async def test_no_recipients(self, db_session, build, session_factory, queue):
        await seed(build, days=7, role="viewer")
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert result.status == "completed"
        assert result.notifications_created == 0


class TestExpiryScanFailures:

    @pytest.mark.asyncio
    async def test_enqueue_failure_is_recorded(self, db_session, build, session_factory):
        await seed(build, days=7)
        await db_session.commit()

        result = await ExpiryNotificationService(session_factory, FakeQueue(fail=True)).run(now=NOW)

        assert result.status == "completed_with_errors"
        assert result.notifications_created == 1
        assert result.jobs_enqueued == 0
        assert "enqueue failed" in result.errors[0]["error"]

        notifications = await all_notifications(session_factory)
        assert len(notifications) == 1
        assert notifications[0].status == "pending"
        assert notifications[0].queued_at is None
        assert notifications[0].extra_data["enqueue_error"] == "broker unavailable"

    @pytest.mark.asyncio
    async def test_unqueued_notification_is_enqueued_by_next_run(self, db_session, build, session_factory):
        await seed(build, days=7)
        await db_session.commit()

        await ExpiryNotificationService(session_factory, FakeQueue(fail=True)).run(now=NOW)
        healthy = FakeQueue()
        second = await ExpiryNotificationService(session_factory, healthy).run(now=NOW + timedelta(hours=1))

        assert second.status == "completed"
        assert second.notifications_created == 0
        assert second.jobs_enqueued == 1
        assert len(healthy.jobs) == 1

        notifications = await all_notifications(session_factory)
        assert len(notifications) == 1
        notification = notifications[0]
        job = healthy.jobs[0]
        assert job.notification_id == str(notification.id)
        assert job.recipient_email == "officer@example.com"
        assert job.subject == "URGENT: Document Expiring Soon"
        assert job.data["days_until_expiry"] == 7
        assert notification.queued_at is not None
        assert "enqueue_error" not in notification.extra_data

        third = await ExpiryNotificationService(session_factory, healthy).run(now=NOW + timedelta(hours=2))
        assert third.jobs_enqueued == 0
        assert len(healthy.jobs) == 1

    @pytest.mark.asyncio
    async def test_sent_notification_is_not_enqueued_again(self, db_session, build, session_factory):
        await seed(build, days=7)
        await db_session.commit()
        await ExpiryNotificationService(session_factory, FakeQueue(fail=True)).run(now=NOW)

        async with session_factory() as session:
            notification = (await session.execute(select(Notification))).scalar_one()
            notification.mark_sent("msg-1")
            await session.commit()

        healthy = FakeQueue()
        result = await ExpiryNotificationService(session_factory, healthy).run(now=NOW + timedelta(hours=1))

        assert result.jobs_enqueued == 0
        assert healthy.jobs == []

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session_factory, queue):
        with pytest.raises(TenantNotFoundException):
            await ExpiryNotificationService(session_factory, queue).run(tenant_id=uuid.uuid4(), now=NOW)

    @pytest.mark.asyncio
    async def test_audit_entry_for_created_notifications(self, db_session, build, session_factory, queue):
        tenant, _, _ = await seed(build, days=7)
        await db_session.commit()

        await ExpiryNotificationService(session_factory, queue).run(tenant_id=tenant.id, now=NOW)

        logs = await AuditService(session_factory).get_audit_logs(tenant.id, action=AuditAction.NOTIFICATIONS_CREATED)
        assert len(logs) == 1
        assert logs[0].new_values == {"kind": "document_expiry", "created": 1}
