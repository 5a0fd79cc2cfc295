"""
Compliance Cloud - Celery Tasks

Background tasks for the scheduled compliance refresh, reminder scans and
notification delivery.

Each task runs its coroutine on a fresh event loop with its own NullPool
engine, disposed when the task finishes.
"""

import asyncio
import uuid
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, Optional

from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import create_engine_for, create_session_factory
from app.tasks.queues import CeleryDeliveryQueue, DeliveryJob
from app.utils.error_handling import DeliveryException, TransientStoreException

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@asynccontextmanager
async def worker_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory bound to a task-local NullPool engine."""
    engine = create_engine_for(null_pool=True)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


def _parse_tenant_id(tenant_id: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(str(tenant_id)) if tenant_id else None


def _progress_reporter(task):
    """Publish runner progress as the PROGRESS task state."""
    def report(current: int, total: int, tenant_id: uuid.UUID) -> None:
        if not task.request.id:
            return
        task.update_state(
            state='PROGRESS',
            meta={"current": current, "total": total, "tenant_id": str(tenant_id)},
        )
    return report


# ===========================================
# COMPLIANCE REFRESH
# ===========================================

@shared_task(
    name='app.tasks.celery_tasks.compliance_refresh_task',
    bind=True,
    rate_limit=settings.compliance_refresh_rate_limit,
    autoretry_for=(TransientStoreException,),
    retry_backoff=True,
    max_retries=3,
)
def compliance_refresh_task(self, tenant_id: Optional[str] = None, triggered_by: str = "cron") -> Dict[str, Any]:
    """Recompute compliance scores for all tenants (or one)."""
    logger.info(f"Compliance refresh task {self.request.id} started (tenant={tenant_id}, trigger={triggered_by})")
    return run_async(_compliance_refresh(tenant_id, triggered_by, _progress_reporter(self)))


async def _compliance_refresh(tenant_id: Optional[str], triggered_by: str, progress_callback) -> Dict[str, Any]:
    """Async implementation of the compliance refresh."""
    from app.services.compliance_refresh_service import ComplianceRefreshRunner

    async with worker_session_factory() as session_factory:
        runner = ComplianceRefreshRunner(session_factory, progress_callback=progress_callback)
        result = await runner.run(tenant_id=_parse_tenant_id(tenant_id), triggered_by=triggered_by)
    return result.to_dict()


# ===========================================
# REMINDER SCANS
# ===========================================

@shared_task(
    name='app.tasks.celery_tasks.expiry_notifications_task',
    bind=True,
    autoretry_for=(TransientStoreException,),
    retry_backoff=True,
    max_retries=3,
)
def expiry_notifications_task(self, tenant_id: Optional[str] = None, triggered_by: str = "cron") -> Dict[str, Any]:
    """Create document expiry notifications for today's thresholds."""
    return run_async(_expiry_notifications(tenant_id, triggered_by, _progress_reporter(self)))


async def _expiry_notifications(tenant_id: Optional[str], triggered_by: str, progress_callback) -> Dict[str, Any]:
    from app.services.expiry_notification_service import ExpiryNotificationService

    async with worker_session_factory() as session_factory:
        service = ExpiryNotificationService(
            session_factory,
            CeleryDeliveryQueue(),
            progress_callback=progress_callback,
        )
        result = await service.run(tenant_id=_parse_tenant_id(tenant_id), triggered_by=triggered_by)
    return result.to_dict()


@shared_task(
    name='app.tasks.celery_tasks.filing_reminders_task',
    bind=True,
    autoretry_for=(TransientStoreException,),
    retry_backoff=True,
    max_retries=3,
)
def filing_reminders_task(self, tenant_id: Optional[str] = None, triggered_by: str = "cron") -> Dict[str, Any]:
    """Create filing deadline reminders for today's thresholds."""
    return run_async(_filing_reminders(tenant_id, triggered_by, _progress_reporter(self)))


async def _filing_reminders(tenant_id: Optional[str], triggered_by: str, progress_callback) -> Dict[str, Any]:
    from app.services.filing_reminder_service import FilingReminderService

    async with worker_session_factory() as session_factory:
        service = FilingReminderService(
            session_factory,
            CeleryDeliveryQueue(),
            progress_callback=progress_callback,
        )
        result = await service.run(tenant_id=_parse_tenant_id(tenant_id), triggered_by=triggered_by)
    return result.to_dict()


# ===========================================
# DELIVERY
# ===========================================

@shared_task(
    name='app.tasks.celery_tasks.send_notification_email_task',
    bind=True,
    max_retries=settings.email_max_retries,
    rate_limit=settings.email_rate_limit,
)
def send_notification_email_task(self, job_payload: Dict[str, Any]) -> Dict[str, Any]:
    """Deliver one notification email, retrying transient failures with exponential backoff."""
    job = DeliveryJob.from_dict(job_payload)
    final_attempt = self.request.retries >= self.max_retries
    try:
        outcome = run_async(_send_notification_email(job, final_attempt, self.request.retries + 1))
    except DeliveryException as exc:
        countdown = settings.email_retry_backoff_seconds * (2 ** self.request.retries)
        logger.warning(f"Retrying notification {job.notification_id} in {countdown}s: {exc.message}")
        raise self.retry(exc=exc, countdown=countdown)
    return asdict(outcome)


async def _send_notification_email(job: DeliveryJob, final_attempt: bool, attempt: int):
    from app.services.delivery_dispatcher import DeliveryDispatcher

    async with worker_session_factory() as session_factory:
        dispatcher = DeliveryDispatcher(session_factory)
        return await dispatcher.dispatch(job, final_attempt=final_attempt, attempt=attempt)


# ===========================================
# MAINTENANCE
# ===========================================

@shared_task(name='app.tasks.celery_tasks.cleanup_notifications_task')
def cleanup_notifications_task() -> Dict[str, Any]:
    """Clean up old notifications."""
    return run_async(_cleanup_notifications())


async def _cleanup_notifications() -> Dict[str, Any]:
    """Delete notifications past the retention window."""
    from app.services.notification_service import NotificationService

    async with worker_session_factory() as session_factory:
        async with session_factory() as db:
            service = NotificationService(db)
            deleted = await service.delete_old_notifications(days_old=settings.notification_retention_days)

    return {"deleted_count": deleted}


# ===========================================
# ENQUEUE HELPERS
# ===========================================

def enqueue_compliance_refresh(tenant_id: Optional[uuid.UUID] = None, triggered_by: str = "manual") -> str:
    """Queue a compliance refresh run; returns the Celery task id."""
    async_result = compliance_refresh_task.delay(
        tenant_id=str(tenant_id) if tenant_id else None,
        triggered_by=triggered_by,
    )
    logger.info(f"Compliance refresh queued: task {async_result.id} (tenant={tenant_id}, trigger={triggered_by})")
    return async_result.id


def enqueue_expiry_check(tenant_id: Optional[uuid.UUID] = None, triggered_by: str = "manual") -> str:
    """Queue an expiry notification scan; returns the Celery task id."""
    async_result = expiry_notifications_task.delay(
        tenant_id=str(tenant_id) if tenant_id else None,
        triggered_by=triggered_by,
    )
    logger.info(f"Expiry check queued: task {async_result.id} (tenant={tenant_id}, trigger={triggered_by})")
    return async_result.id


def enqueue_filing_reminders(tenant_id: Optional[uuid.UUID] = None, triggered_by: str = "manual") -> str:
    """Queue a filing reminder scan; returns the Celery task id."""
    async_result = filing_reminders_task.delay(
        tenant_id=str(tenant_id) if tenant_id else None,
        triggered_by=triggered_by,
    )
    return async_result.id
