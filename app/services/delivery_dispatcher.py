"""
Compliance Cloud - Delivery Dispatcher

Sends one queued delivery job and records the outcome on its notification.

Outcomes:
- success: notification marked sent with the provider message id
- permanent failure, or transient failure on the last attempt:
  notification marked failed with the error
- transient failure with attempts left: DeliveryException re-raised so
  the Celery task retries
"""

import uuid
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.email_service import EmailMessage, EmailService
from app.services.notification_service import NotificationService
from app.services.notification_templates import render
from app.tasks.queues import DeliveryJob
from app.utils.error_handling import DeliveryException

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    notification_id: str
    status: str  # sent | failed | skipped
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class DeliveryDispatcher:
    """Delivers notification emails."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_service: Optional[EmailService] = None,
    ):
        self.session_factory = session_factory
        self.email_service = email_service or EmailService()

    async def dispatch(
        self,
        job: DeliveryJob,
        final_attempt: bool = True,
        attempt: int = 1,
    ) -> DispatchOutcome:
        async with self.session_factory() as session:
            notifications = NotificationService(session)
            notification = await notifications.get_notification(uuid.UUID(job.notification_id))
            if notification is None:
                logger.warning(f"Notification {job.notification_id} no longer exists; dropping delivery")
                return DispatchOutcome(job.notification_id, "skipped", error="notification not found")
            if notification.is_sent:
                logger.info(f"Notification {job.notification_id} already sent; skipping")
                return DispatchOutcome(job.notification_id, "skipped")

            text, html = render(job.template, job.data, job.recipient_name)
            message = EmailMessage(
                to=[job.recipient_email],
                subject=job.subject,
                body_text=text,
                body_html=html,
            )

            try:
                message_id = await self.email_service.send_email(message)
            except DeliveryException as e:
                if e.transient and not final_attempt:
                    logger.warning(
                        f"Transient delivery failure for notification {job.notification_id} "
                        f"(attempt {attempt}): {e.message}"
                    )
                    raise
                await notifications.mark_failed(notification, e.message, attempts=attempt)
                return DispatchOutcome(job.notification_id, "failed", error=e.message)
            except Exception as e:
                logger.exception(f"Unexpected delivery error for notification {job.notification_id}")
                await notifications.mark_failed(notification, str(e), attempts=attempt)
                return DispatchOutcome(job.notification_id, "failed", error=str(e))

            await notifications.mark_sent(notification, message_id)
            return DispatchOutcome(job.notification_id, "sent", provider_message_id=message_id)
