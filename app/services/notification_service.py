"""
Compliance Cloud - Notification Service

Persistent notification storage: creation, delivery status updates,
lookups and retention cleanup.
"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import (
    Notification as NotificationModel,
    NotificationChannel,
    NotificationKind,
    NotificationPriority,
    NotificationStatus,
)
from app.services.notification_templates import compliance_alert_data
from app.tasks.queues import DeliveryJob

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for managing notifications with full database integration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        title: str,
        message: str,
        kind: str,
        priority: str = NotificationPriority.NORMAL.value,
        channel: str = NotificationChannel.EMAIL.value,
        source_id: Optional[uuid.UUID] = None,
        threshold_days: Optional[int] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> NotificationModel:
        """
        Create a pending notification for a user.

        Reminder scans create theirs through insert-or-ignore on the dedup
        key; this is the path for ad-hoc notifications such as compliance
        alerts.
        """
        notification = NotificationModel(
            tenant_id=tenant_id,
            recipient_user_id=user_id,
            title=title,
            message=message,
            kind=kind,
            priority=priority,
            channel=channel,
            status=NotificationStatus.PENDING.value,
            source_id=source_id,
            threshold_days=threshold_days,
            extra_data=extra_data,
        )

        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Notification created for user {user_id}: {title}")
        return notification

    async def create_compliance_alert(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        email: str,
        card,
        client_name: str,
        recipient_name: Optional[str] = None,
    ) -> Tuple[NotificationModel, DeliveryJob]:
        """
        Create a compliance-alert notification from a ScoreCard.

        Returns the notification and the delivery job to enqueue once the
        caller has committed.
        """
        data = compliance_alert_data(card, client_name)
        level = card.level.upper()
        priority = (
            NotificationPriority.URGENT.value if card.level == "red" else NotificationPriority.HIGH.value
        )
        notification = await self.create_notification(
            tenant_id=tenant_id,
            user_id=user_id,
            title=f"Compliance Alert: {client_name}",
            message=f"{level}: Client {client_name} compliance score is {data['compliance_score']}%",
            kind=NotificationKind.COMPLIANCE_ALERT.value,
            priority=priority,
            source_id=card.client_id,
            extra_data=data,
        )
        job = DeliveryJob(
            notification_id=str(notification.id),
            tenant_id=str(tenant_id),
            recipient_email=email,
            recipient_name=recipient_name,
            subject=f"Compliance Alert: {client_name} is {level}",
            template="compliance-alert",
            data=data,
        )
        return notification, job

    async def get_notification(self, notification_id: uuid.UUID) -> Optional[NotificationModel]:
        """Get a notification by ID."""
        return await self.db.get(NotificationModel, notification_id)

    async def get_user_notifications(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[NotificationModel], int]:
        """
        Get notifications for a user with optional filters.

        Returns:
            Tuple of (notifications, total_count)
        """
        query = (
            select(NotificationModel)
            .where(NotificationModel.tenant_id == tenant_id)
            .where(NotificationModel.recipient_user_id == user_id)
        )
        count_query = (
            select(func.count(NotificationModel.id))
            .where(NotificationModel.tenant_id == tenant_id)
            .where(NotificationModel.recipient_user_id == user_id)
        )

        if status:
            query = query.where(NotificationModel.status == status)
            count_query = count_query.where(NotificationModel.status == status)
        if kind:
            query = query.where(NotificationModel.kind == kind)
            count_query = count_query.where(NotificationModel.kind == kind)

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        result = await self.db.execute(
            query
            .order_by(NotificationModel.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def mark_sent(self, notification: NotificationModel, provider_message_id: Optional[str]) -> None:
        notification.mark_sent(provider_message_id)
        await self.db.commit()
        logger.info(f"Notification {notification.id} sent (message id {provider_message_id})")

    async def mark_failed(
        self,
        notification: NotificationModel,
        error: str,
        attempts: Optional[int] = None,
    ) -> None:
        notification.mark_failed(error, attempts)
        await self.db.commit()
        logger.warning(f"Notification {notification.id} failed: {error}")

    async def delete_old_notifications(
        self,
        days_old: int = 90,
    ) -> int:
        """Delete notifications older than specified days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)

        result = await self.db.execute(
            delete(NotificationModel)
            .where(NotificationModel.created_at < cutoff)
        )

        await self.db.commit()

        count = result.rowcount
        logger.info(f"Deleted {count} old notifications")
        return count
