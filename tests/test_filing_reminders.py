"""
Tests for filing deadline reminders.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.notification import Notification
from app.services.filing_reminder_service import FilingReminderService

from conftest import NOW, TODAY, FakeQueue


async def seed(build, days=3, status="draft", role="tax_preparer"):
    tenant = await build.tenant()
    preparer = await build.user(tenant, role, email="preparer@example.com", full_name="Bola Ade")
    client = await build.client(tenant, name="Acme Ltd")
    vat = await build.filing_type(tenant, name="VAT Return")
    filing = await build.filing(
        client,
        vat,
        status=status,
        period_start=TODAY + timedelta(days=days) - timedelta(days=30),
        period_end=TODAY + timedelta(days=days),
    )
    return tenant, preparer, filing


class TestFilingReminders:
    """Reminders for open filings approaching their period end"""

    @pytest.mark.asyncio
    async def test_urgent_reminder(self, db_session, build, session_factory, queue):
        _, preparer, filing = await seed(build, days=3)
        await db_session.commit()

        result = await FilingReminderService(session_factory, queue).run(now=NOW)

        assert result.notifications_created == 1
        job = queue.jobs[0]
        assert job.recipient_email == "preparer@example.com"
        assert job.template == "filing-reminder"
        assert job.subject == "URGENT: Filing Deadline Approaching"
        assert job.data["filing_id"] == str(filing.id)
        assert job.data["days_until_due"] == 3
        assert job.data["status"] == "draft"
        assert job.data["period_label"].endswith((TODAY + timedelta(days=3)).isoformat())

        async with session_factory() as session:
            notification = (await session.execute(select(Notification))).scalar_one()
        assert notification.kind == "filing_reminder"
        assert notification.recipient_user_id == preparer.id
        assert notification.message == 'URGENT: Filing "VAT Return" for client Acme Ltd due in 3 day(s)'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days,urgency", [(7, "HIGH"), (14, "NORMAL")])
    async def test_bands(self, db_session, build, session_factory, queue, days, urgency):
        await seed(build, days=days)
        await db_session.commit()

        await FilingReminderService(session_factory, queue).run(now=NOW)

        assert queue.jobs[0].data["urgency_level"] == urgency

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["submitted", "approved", "overdue"])
    async def test_closed_filings_are_ignored(self, db_session, build, session_factory, queue, status):
        await seed(build, days=3, status=status)
        await db_session.commit()

        result = await FilingReminderService(session_factory, queue).run(now=NOW)

        assert result.sources_checked == 0
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_prepared_filings_are_reminded(self, db_session, build, session_factory, queue):
        await seed(build, days=7, status="prepared")
        await db_session.commit()

        result = await FilingReminderService(session_factory, queue).run(now=NOW)

        assert result.notifications_created == 1

    @pytest.mark.asyncio
    async def test_non_threshold_day(self, db_session, build, session_factory, queue):
        await seed(build, days=5)
        await db_session.commit()

        result = await FilingReminderService(session_factory, queue).run(now=NOW)

        assert result.sources_checked == 1
        assert result.notifications_created == 0

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db_session, build, session_factory, queue):
        await seed(build, days=3)
        await db_session.commit()

        service = FilingReminderService(session_factory, queue)
        await service.run(now=NOW)
        second = await service.run(now=NOW)

        assert second.notifications_created == 0
        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_filing_and_expiry_reminders_do_not_collide(self, db_session, build, session_factory, queue):
        """Same recipient and threshold under different kinds are separate notifications."""
        from app.services.expiry_notification_service import ExpiryNotificationService

        tenant, _, filing = await seed(build, days=7, role="compliance_officer")
        client = await build.client(tenant, name="Beta Ltd")
        tcc = await build.document_type(tenant)
        await build.document(client, tcc, expiry_date=TODAY + timedelta(days=7))
        await db_session.commit()

        await FilingReminderService(session_factory, queue).run(now=NOW)
        await ExpiryNotificationService(session_factory, queue).run(now=NOW)

        assert sorted(job.template for job in queue.jobs) == ["document-expiry", "filing-reminder"]

    @pytest.mark.asyncio
    async def test_reminder_lost_to_broker_outage_is_delivered_later(self, db_session, build, session_factory):
        await seed(build, days=3)
        await db_session.commit()

        first = await FilingReminderService(session_factory, FakeQueue(fail=True)).run(now=NOW)
        healthy = FakeQueue()
        second = await FilingReminderService(session_factory, healthy).run(now=NOW + timedelta(hours=1))

        assert first.jobs_enqueued == 0
        assert second.notifications_created == 0
        assert len(healthy.jobs) == 1
        assert healthy.jobs[0].template == "filing-reminder"
        assert healthy.jobs[0].data["days_until_due"] == 3
