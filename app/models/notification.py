"""
Compliance Cloud - Notification Model

Model for storing user notifications produced by the compliance engine.

Notification kinds:
- document_expiry: document reaching an expiry threshold
- filing_reminder: filing period end approaching
- compliance_alert: client compliance level alert

A notification is created at most once per
(kind, source_id, threshold_days, recipient_user_id).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, JSONType


class NotificationKind(str, Enum):
    """What produced the notification."""
    DOCUMENT_EXPIRY = "document_expiry"
    FILING_REMINDER = "filing_reminder"
    COMPLIANCE_ALERT = "compliance_alert"


class NotificationPriority(str, Enum):
    """Priority levels for notifications."""
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationChannel(str, Enum):
    """Delivery channels for notifications."""
    IN_APP = "in_app"
    EMAIL = "email"


class NotificationStatus(str, Enum):
    """Delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(BaseModel):
    """
    Notification model for storing user notifications.

    status moves pending -> sent | failed; delivery metadata (provider
    message id, last error, attempts) lives in extra_data.

    queued_at stays NULL until a delivery job for the row has been handed
    to the queue; the reminder scans re-enqueue pending rows without it.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "kind", "source_id", "threshold_days", "recipient_user_id",
            name="uq_notifications_dedup_key",
        ),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Recipient
    recipient_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Notification content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    channel: Mapped[str] = mapped_column(
        String(20),
        default=NotificationChannel.EMAIL.value,
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default=NotificationPriority.NORMAL.value,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Dedup key
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    threshold_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Additional data (JSON)
    extra_data: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Source ids, urgency, delivery metadata",
    )

    queued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, kind={self.kind}, user={self.recipient_user_id})>"

    def mark_sent(self, provider_message_id: Optional[str] = None) -> None:
        """Mark delivery as successful."""
        self.status = NotificationStatus.SENT.value
        self.sent_at = datetime.now(timezone.utc)
        data = dict(self.extra_data or {})
        data["provider_message_id"] = provider_message_id
        data.pop("error", None)
        self.extra_data = data

    def mark_failed(self, error: str, attempts: Optional[int] = None) -> None:
        """Mark delivery as failed and keep the error for operators."""
        self.status = NotificationStatus.FAILED.value
        data = dict(self.extra_data or {})
        data["error"] = error
        if attempts is not None:
            data["attempts"] = attempts
        self.extra_data = data

    def mark_queued(self) -> None:
        self.queued_at = datetime.now(timezone.utc)
        data = dict(self.extra_data or {})
        data.pop("enqueue_error", None)
        self.extra_data = data

    def mark_enqueue_failed(self, error: str) -> None:
        """Keep the broker error; the row stays pending and unqueued."""
        data = dict(self.extra_data or {})
        data["enqueue_error"] = error
        self.extra_data = data

    @property
    def is_sent(self) -> bool:
        return self.status == NotificationStatus.SENT.value
