"""
Compliance Cloud - Delivery Queue

Delivery jobs and the queue abstraction the notification engines publish to.
Services receive a queue instance; production passes CeleryDeliveryQueue,
tests pass an in-memory fake.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class DeliveryJob:
    """One email to send for one notification."""
    notification_id: str
    tenant_id: str
    recipient_email: str
    subject: str
    template: str
    recipient_name: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DeliveryJob":
        return cls(
            notification_id=str(payload["notification_id"]),
            tenant_id=str(payload["tenant_id"]),
            recipient_email=payload["recipient_email"],
            subject=payload["subject"],
            template=payload.get("template") or "default",
            recipient_name=payload.get("recipient_name"),
            data=dict(payload.get("data") or {}),
        )


class DeliveryQueue(Protocol):
    def enqueue(self, job: DeliveryJob) -> Optional[str]:
        """Publish a job; returns a queue-assigned id when available."""
        ...


class CeleryDeliveryQueue:
    """Publishes delivery jobs to the Celery email queue."""

    def enqueue(self, job: DeliveryJob) -> Optional[str]:
        from app.tasks.celery_tasks import send_notification_email_task

        async_result = send_notification_email_task.delay(job.to_dict())
        logger.debug(f"Queued email for notification {job.notification_id}: task {async_result.id}")
        return async_result.id
