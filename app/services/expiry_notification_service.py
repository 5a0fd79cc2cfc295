"""
Compliance Cloud - Expiry Notification Engine

Daily scan for valid documents whose current version expires exactly
7, 14 or 30 days from now (configurable). Each hit produces one
notification per notifying tenant user and one email job.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.client import Client
from app.models.document import Document, DocumentStatus, DocumentType, DocumentVersion
from app.models.notification import NotificationKind
from app.services.threshold_notifications import (
    ReminderCandidate,
    ThresholdNotificationService,
    days_until,
)

logger = logging.getLogger(__name__)


class ExpiryNotificationService(ThresholdNotificationService):
    """Document expiry reminders."""

    kind = NotificationKind.DOCUMENT_EXPIRY.value
    template = "document-expiry"
    urgency_bands = ((7, "URGENT"), (14, "HIGH"))

    def default_thresholds(self) -> Sequence[int]:
        return settings.expiry_notification_thresholds

    def default_roles(self) -> Sequence[str]:
        return settings.expiry_notification_roles

    async def find_candidates(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[int, List[ReminderCandidate]]:
        today = now.date()
        horizon = today + timedelta(days=max(self.thresholds) + 1)

        rows = await session.execute(
            select(
                Document.id,
                Document.title,
                Document.client_id,
                Client.name,
                DocumentType.name,
                DocumentVersion.expiry_date,
            )
            .join(
                DocumentVersion,
                and_(
                    DocumentVersion.document_id == Document.id,
                    DocumentVersion.is_current == True,  # noqa: E712
                ),
            )
            .join(Client, Client.id == Document.client_id)
            .join(DocumentType, DocumentType.id == Document.document_type_id)
            .where(Document.tenant_id == tenant_id)
            .where(Document.status == DocumentStatus.VALID.value)
            .where(DocumentVersion.expiry_date >= today)
            .where(DocumentVersion.expiry_date <= horizon)
        )
        documents = rows.all()

        candidates: List[ReminderCandidate] = []
        for document_id, title, client_id, client_name, type_name, expiry_date in documents:
            days = days_until(expiry_date, now)
            # Exact match only; a missed day is not caught up
            if days not in self.thresholds:
                continue
            urgency = self.urgency(days)
            candidates.append(ReminderCandidate(
                source_id=document_id,
                days_until=days,
                urgency=urgency,
                title="Document Expiring Soon",
                message=(
                    f'{urgency}: Document "{title}" for client {client_name} '
                    f"expires in {days} day(s)"
                ),
                subject=f"{urgency}: Document Expiring Soon",
                data={
                    "document_id": str(document_id),
                    "document_title": title,
                    "document_type": type_name,
                    "client_id": str(client_id),
                    "client_name": client_name,
                    "expiry_date": expiry_date.isoformat(),
                    "days_until_expiry": days,
                    "threshold": days,
                    "urgency_level": urgency,
                },
            ))

        return len(documents), candidates
