"""
Compliance Cloud - Audit Log Model

Append-only audit log. The compliance engine writes system entries
(refresh runs, notification batches) here.
"""

import uuid
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.base import JSONType


class AuditAction(str, enum.Enum):
    """Audit action types."""
    COMPLIANCE_REFRESH = "compliance_refresh"
    NOTIFICATIONS_CREATED = "notifications_created"


class AuditLog(Base):
    """
    Immutable audit log entry.

    This table should have no UPDATE or DELETE permissions.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,  # Allow NULL for platform-level actions
        index=True,
    )

    # System actions have no user
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )
    actor: Mapped[str] = mapped_column(String(100), default="system", nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="audit_action", values_callable=lambda actions: [a.value for a in actions]),
        nullable=False,
        index=True,
    )

    target_entity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Type of entity (tenant, client, notification, ...)",
    )
    target_entity_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="ID of the affected entity",
    )

    new_values: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Outcome payload",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Human-readable description of the action",
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action.value}, type={self.target_entity_type})>"
