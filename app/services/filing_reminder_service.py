"""
Compliance Cloud - Filing Reminder Service

Daily scan for draft or prepared filings whose period ends exactly
3, 7 or 14 days from now (configurable).
"""

import uuid
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.client import Client
from app.models.filing import Filing, FilingStatus, FilingType
from app.models.notification import NotificationKind
from app.services.threshold_notifications import (
    ReminderCandidate,
    ThresholdNotificationService,
    days_until,
)


OPEN_FILING_STATUSES = (FilingStatus.DRAFT.value, FilingStatus.PREPARED.value)


class FilingReminderService(ThresholdNotificationService):
    """Filing deadline reminders."""

    kind = NotificationKind.FILING_REMINDER.value
    template = "filing-reminder"
    urgency_bands = ((3, "URGENT"), (7, "HIGH"))

    def default_thresholds(self) -> Sequence[int]:
        return settings.filing_reminder_thresholds

    def default_roles(self) -> Sequence[str]:
        return settings.filing_reminder_roles

    async def find_candidates(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[int, List[ReminderCandidate]]:
        today = now.date()
        horizon = today + timedelta(days=max(self.thresholds) + 1)

        rows = await session.execute(
            select(Filing, Client.name, FilingType.name)
            .join(Client, Client.id == Filing.client_id)
            .join(FilingType, FilingType.id == Filing.filing_type_id)
            .where(Filing.tenant_id == tenant_id)
            .where(Filing.status.in_(OPEN_FILING_STATUSES))
            .where(Filing.period_end >= today)
            .where(Filing.period_end <= horizon)
        )
        filings = rows.all()

        candidates: List[ReminderCandidate] = []
        for filing, client_name, filing_type in filings:
            days = days_until(filing.period_end, now)
            if days not in self.thresholds:
                continue
            urgency = self.urgency(days)
            period_label = None
            if filing.period_start:
                period_label = f"{filing.period_start.isoformat()} to {filing.period_end.isoformat()}"
            candidates.append(ReminderCandidate(
                source_id=filing.id,
                days_until=days,
                urgency=urgency,
                title="Filing Deadline Approaching",
                message=(
                    f'{urgency}: Filing "{filing_type}" for client {client_name} '
                    f"due in {days} day(s)"
                ),
                subject=f"{urgency}: Filing Deadline Approaching",
                data={
                    "filing_id": str(filing.id),
                    "filing_type": filing_type,
                    "client_id": str(filing.client_id),
                    "client_name": client_name,
                    "period_label": period_label,
                    "period_end": filing.period_end.isoformat(),
                    "days_until_due": days,
                    "threshold": days,
                    "status": filing.status,
                    "urgency_level": urgency,
                },
            ))

        return len(filings), candidates
