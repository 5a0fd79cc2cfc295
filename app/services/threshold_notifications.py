"""
Compliance Cloud - Threshold Notification Base

Shared machinery for the daily reminder scans (document expiry, filing
deadlines): find sources exactly N days from a deadline, create one
notification per recipient at most once, and enqueue delivery jobs for
the rows actually created. Rows whose job never reached the queue keep
queued_at NULL and are re-enqueued by the next scan of their tenant.

Dedup relies on the notifications unique key
(kind, source_id, threshold_days, recipient_user_id) plus
INSERT ... ON CONFLICT DO NOTHING; overlapping or retried runs insert
nothing new and enqueue only rows that never reached the queue.
"""

import math
import time
import uuid
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import dialect_insert
from app.models.audit import AuditAction
from app.models.notification import Notification, NotificationChannel, NotificationStatus
from app.models.tenant import Tenant, TenantUser, User
from app.services.audit_service import AuditService
from app.tasks.queues import DeliveryJob, DeliveryQueue
from app.utils.error_handling import TenantNotFoundException, translate_db_error

logger = logging.getLogger(__name__)


def days_until(deadline: date, now: datetime) -> int:
    """Whole days from now until the start of the (UTC) deadline day, rounded up."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    delta = datetime.combine(deadline, dt_time.min) - now
    return math.ceil(delta / timedelta(days=1))


def urgency_for(days: int, bands: Sequence[Tuple[int, str]], default: str = "NORMAL") -> str:
    """First band whose upper bound is >= days, e.g. ((7, "URGENT"), (14, "HIGH"))."""
    for upper, label in bands:
        if days <= upper:
            return label
    return default


@dataclass
class ReminderCandidate:
    """A source record that hit a threshold today."""
    source_id: uuid.UUID
    days_until: int
    urgency: str
    title: str
    message: str
    subject: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Recipient:
    user_id: uuid.UUID
    email: str
    name: Optional[str] = None


@dataclass
class NotificationRunResult:
    triggered_by: str = "cron"
    status: str = "pending"
    tenants_total: int = 0
    tenants_processed: int = 0
    sources_checked: int = 0
    notifications_created: int = 0
    jobs_enqueued: int = 0
    duration_ms: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ThresholdNotificationService:
    """
    Base class for threshold reminder scans.

    Subclasses set kind, template, urgency_bands and implement
    find_candidates().
    """

    kind: str = ""
    template: str = "default"
    urgency_bands: Tuple[Tuple[int, str], ...] = ()

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: DeliveryQueue,
        thresholds: Optional[Sequence[int]] = None,
        roles: Optional[Sequence[str]] = None,
        audit_service: Optional[AuditService] = None,
        progress_callback: Optional[Callable[[int, int, uuid.UUID], None]] = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.thresholds = sorted(set(thresholds or self.default_thresholds()))
        self.roles = list(roles or self.default_roles())
        self.audit_service = audit_service or AuditService(session_factory)
        self.progress_callback = progress_callback

    def default_thresholds(self) -> Sequence[int]:
        raise NotImplementedError

    def default_roles(self) -> Sequence[str]:
        raise NotImplementedError

    async def find_candidates(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[int, List[ReminderCandidate]]:
        """Return (sources_checked, candidates hitting a threshold)."""
        raise NotImplementedError

    def urgency(self, days: int) -> str:
        return urgency_for(days, self.urgency_bands)

    # ===========================================
    # RUN
    # ===========================================

    async def run(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        triggered_by: str = "cron",
        now: Optional[datetime] = None,
    ) -> NotificationRunResult:
        """Scan all tenants (or one) and create notifications for today's thresholds."""
        now = now or datetime.now(timezone.utc)
        started = time.monotonic()
        result = NotificationRunResult(triggered_by=triggered_by)

        tenant_ids = await self._list_tenants(tenant_id)
        result.status = "running"
        result.tenants_total = len(tenant_ids)
        logger.info(f"{self.kind} scan started ({triggered_by}): {len(tenant_ids)} tenant(s), thresholds {self.thresholds}")

        for index, tid in enumerate(tenant_ids, start=1):
            if self.progress_callback is not None:
                self.progress_callback(index, len(tenant_ids), tid)
            try:
                checked, created, jobs = await self.process_tenant(tid, now)
            except Exception as e:
                logger.exception(f"{self.kind} scan failed for tenant {tid}")
                result.errors.append({"tenant_id": str(tid), "error": str(e)})
                continue

            result.tenants_processed += 1
            result.sources_checked += checked
            result.notifications_created += created

            # Enqueue only after the notifications are committed
            queued: List[str] = []
            failed: Dict[str, str] = {}
            for job in jobs:
                try:
                    self.queue.enqueue(job)
                    queued.append(job.notification_id)
                    result.jobs_enqueued += 1
                except Exception as e:
                    logger.error(f"Failed to enqueue delivery for notification {job.notification_id}: {e}")
                    failed[job.notification_id] = str(e)
                    result.errors.append({
                        "tenant_id": str(tid),
                        "error": f"enqueue failed for notification {job.notification_id}: {e}",
                    })

            try:
                await self._record_enqueue(queued, failed)
            except Exception as e:
                logger.exception(f"Failed to record enqueue state for tenant {tid}")
                result.errors.append({"tenant_id": str(tid), "error": str(e)})

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.status = "completed_with_errors" if result.errors else "completed"
        logger.info(
            f"{self.kind} scan finished: {result.notifications_created} notification(s), "
            f"{result.jobs_enqueued} job(s) enqueued, {len(result.errors)} error(s)"
        )
        return result

    async def _list_tenants(self, tenant_id: Optional[uuid.UUID]) -> List[uuid.UUID]:
        try:
            async with self.session_factory() as session:
                if tenant_id is not None:
                    if await session.get(Tenant, tenant_id) is None:
                        raise TenantNotFoundException(tenant_id)
                    return [tenant_id]
                rows = await session.execute(
                    select(Tenant.id)
                    .where(Tenant.is_active == True)  # noqa: E712
                    .order_by(Tenant.created_at)
                )
                return list(rows.scalars().all())
        except SQLAlchemyError as e:
            raise translate_db_error(e) from e

    async def get_recipients(self, session: AsyncSession, tenant_id: uuid.UUID) -> List[Recipient]:
        """Active tenant users holding one of the notifying roles."""
        rows = await session.execute(
            select(User.id, User.email, User.full_name)
            .join(TenantUser, TenantUser.user_id == User.id)
            .where(TenantUser.tenant_id == tenant_id)
            .where(TenantUser.role.in_(self.roles))
            .where(User.is_active == True)  # noqa: E712
            .order_by(User.email)
        )
        return [Recipient(user_id=uid, email=email, name=name) for uid, email, name in rows.all()]

    async def process_tenant(self, tenant_id: uuid.UUID, now: datetime) -> Tuple[int, int, List[DeliveryJob]]:
        """
        Create this tenant's notifications in one transaction.

        Returns (sources_checked, notifications created, jobs to enqueue).
        The jobs cover the new rows plus earlier pending rows of this kind
        that never reached the queue.
        """
        async with self.session_factory() as session:
            jobs = await self.unqueued_jobs(session, tenant_id)
            created = 0

            checked, candidates = await self.find_candidates(session, tenant_id, now)
            if candidates:
                recipients = await self.get_recipients(session, tenant_id)
                for candidate in candidates:
                    for recipient in recipients:
                        job = DeliveryJob(
                            notification_id=str(uuid.uuid4()),
                            tenant_id=str(tenant_id),
                            recipient_email=recipient.email,
                            recipient_name=recipient.name,
                            subject=candidate.subject,
                            template=self.template,
                            data=dict(candidate.data),
                        )
                        if await self._insert_once(session, tenant_id, candidate, recipient, job):
                            jobs.append(job)
                            created += 1
                await session.commit()

        if created:
            await self.audit_service.log_system_action(
                action=AuditAction.NOTIFICATIONS_CREATED,
                target_entity_type="tenant",
                target_entity_id=str(tenant_id),
                tenant_id=tenant_id,
                new_values={"kind": self.kind, "created": created},
                description=f"Created {created} {self.kind} notification(s)",
            )
        logger.info(f"Tenant {tenant_id}: {checked} source(s) checked, {created} {self.kind} notification(s) created")
        return checked, created, jobs

    async def unqueued_jobs(self, session: AsyncSession, tenant_id: uuid.UUID) -> List[DeliveryJob]:
        """Rebuild delivery jobs for pending rows of this kind that were never queued."""
        rows = await session.execute(
            select(Notification)
            .where(Notification.tenant_id == tenant_id)
            .where(Notification.kind == self.kind)
            .where(Notification.status == NotificationStatus.PENDING.value)
            .where(Notification.queued_at.is_(None))
            .order_by(Notification.created_at)
        )
        jobs = []
        for notification in rows.scalars().all():
            payload = (notification.extra_data or {}).get("delivery_job")
            if not payload:
                logger.warning(f"Notification {notification.id} has no delivery payload; cannot re-enqueue")
                continue
            jobs.append(DeliveryJob.from_dict(payload))
        if jobs:
            logger.info(f"Tenant {tenant_id}: re-enqueueing {len(jobs)} unqueued {self.kind} notification(s)")
        return jobs

    async def _record_enqueue(self, queued: Sequence[str], failed: Dict[str, str]) -> None:
        """Stamp queued rows and keep the broker error on the rest."""
        if not queued and not failed:
            return
        async with self.session_factory() as session:
            ids = [uuid.UUID(nid) for nid in list(queued) + list(failed)]
            rows = await session.execute(select(Notification).where(Notification.id.in_(ids)))
            for notification in rows.scalars().all():
                error = failed.get(str(notification.id))
                if error is None:
                    notification.mark_queued()
                else:
                    notification.mark_enqueue_failed(error)
            await session.commit()

    async def _insert_once(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        candidate: ReminderCandidate,
        recipient: Recipient,
        job: DeliveryJob,
    ) -> bool:
        """Insert the notification unless its dedup key exists; True when a row was added."""
        stmt = (
            dialect_insert(session, Notification)
            .values(
                id=uuid.UUID(job.notification_id),
                tenant_id=tenant_id,
                recipient_user_id=recipient.user_id,
                title=candidate.title,
                message=candidate.message,
                channel=NotificationChannel.EMAIL.value,
                priority=candidate.urgency.lower(),
                status=NotificationStatus.PENDING.value,
                kind=self.kind,
                source_id=candidate.source_id,
                threshold_days=candidate.days_until,
                extra_data={**candidate.data, "delivery_job": job.to_dict()},
            )
            .on_conflict_do_nothing(
                index_elements=["kind", "source_id", "threshold_days", "recipient_user_id"],
            )
            .returning(Notification.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
